"""Bulk cleanup of an owner's draft and unpaid pages."""

import logging
import time
from dataclasses import dataclass, field

from .errors import MemorizuError
from .gate import page_summary

logger = logging.getLogger(__name__)


@dataclass
class BulkDeleteResult:
    succeeded: list = field(default_factory=list)
    failed: list = field(default_factory=list)

    def to_dict(self):
        return {
            'succeeded': list(self.succeeded),
            'failed': list(self.failed),
            'deleted_count': len(self.succeeded),
        }


def list_unpaid_pages(store, owner_id):
    return [page_summary(page) for page in store.list_unpaid(owner_id)]


def bulk_delete(store, owner_id, page_ids, pacing_seconds=0.0, on_progress=None, sleep=time.sleep):
    """Delete each page on its own; a failing page never stops the others.

    Pages are deleted in the order given, duplicates removed. Ownership is
    left to ``store.delete``, so foreign or missing ids end up in ``failed``.
    """
    ordered_ids = list(dict.fromkeys(page_id for page_id in page_ids if page_id))
    result = BulkDeleteResult()
    total = len(ordered_ids)
    for index, page_id in enumerate(ordered_ids):
        if on_progress is not None:
            on_progress(index, total, page_id)
        if index and pacing_seconds > 0:
            sleep(pacing_seconds)
        try:
            store.delete(owner_id, page_id)
        except MemorizuError as exc:
            logger.warning('Bulk delete skipped page %s for %s: %s', page_id, owner_id, exc.message)
            result.failed.append(page_id)
        except Exception:
            logger.exception('Error deleting page %s for %s', page_id, owner_id)
            result.failed.append(page_id)
        else:
            result.succeeded.append(page_id)
    if on_progress is not None:
        on_progress(total, total, None)
    logger.info(
        'Bulk delete for %s finished: %d deleted, %d failed.',
        owner_id,
        len(result.succeeded),
        len(result.failed),
    )
    return result
