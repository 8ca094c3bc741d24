"""Domain exceptions raised by the publication services.

Route handlers translate these into HTTP responses; the services themselves
never build responses.
"""


class MemorizuError(Exception):
    status_code = 400

    def __init__(self, message='', **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        payload = {'error': self.message or self.__class__.__name__}
        if self.details:
            payload['details'] = self.details
        return payload


class PageNotFoundError(MemorizuError):
    status_code = 404


class SlugValidationError(MemorizuError):
    status_code = 400


class SlugUnavailableError(MemorizuError):
    status_code = 409


class PublicationStateError(MemorizuError):
    """The page is not in a state that allows the requested payment action."""

    status_code = 400


class PaymentProviderError(MemorizuError):
    status_code = 502


class StoreError(MemorizuError):
    """The page store could not complete a read or write."""

    status_code = 500


class PaymentNotFoundError(MemorizuError):
    status_code = 404


class WebhookSignatureError(MemorizuError):
    status_code = 400
