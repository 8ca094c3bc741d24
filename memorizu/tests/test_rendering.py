from memorizu.rendering import (
    DEFAULT_DESCRIPTION,
    extract_description,
    extract_first_image,
    safe_url,
    sanitize_components,
    sanitize_settings,
)


def test_description_comes_from_first_text_or_heading():
    components = [
        {"type": "image", "data": {"src": "https://cdn.test/a.jpg"}},
        {"type": "text", "data": {"content": "<p>  </p>"}},
        {"type": "heading", "data": {"text": "<b>Ten years</b> together"}},
        {"type": "text", "data": {"content": "later text"}},
    ]
    assert extract_description(components) == "Ten years together"
    assert extract_description([]) == DEFAULT_DESCRIPTION


def test_long_description_is_truncated():
    description = extract_description([{"type": "text", "data": {"content": "x" * 200}}])
    assert len(description) == 160
    assert description.endswith("...")


def test_first_image_prefers_image_then_gallery():
    assert extract_first_image([{"type": "gallery", "data": {"images": [{"url": "https://cdn.test/g.jpg"}]}}]) == "https://cdn.test/g.jpg"
    assert extract_first_image([{"type": "image", "data": {"src": "javascript:alert(1)"}}]) is None
    assert extract_first_image([{"type": "text", "data": {}}]) is None


def test_safe_url():
    assert safe_url("https://example.com/x") == "https://example.com/x"
    assert safe_url("/local/path") == "/local/path"
    assert safe_url("//evil.test/x") == ""
    assert safe_url("data:text/html,hi") == ""


def test_sanitize_components_drops_unknown_shapes():
    rendered = sanitize_components([
        "not-a-component",
        {"type": "<script>", "data": {}},
        {"id": "c1", "type": "Text", "data": {"content": '<a href="javascript:x" onclick="y">hi</a>'}},
    ])
    assert len(rendered) == 1
    assert rendered[0]["type"] == "text"
    assert "onclick" not in rendered[0]["data"]["content"]
    assert "javascript" not in rendered[0]["data"]["content"]


def test_sanitize_settings_keeps_only_safe_values():
    assert sanitize_settings({"backgroundColor": "#ffeedd", "fontFamily": "Georgia, serif", "customCSS": "*{}"}) == {
        "backgroundColor": "#ffeedd",
        "fontFamily": "Georgia, serif",
    }
    assert sanitize_settings({"backgroundColor": "red;}</style>"}) == {}
    assert sanitize_settings(None) == {}


def test_titles_and_nested_rich_text_are_cleaned():
    rendered = sanitize_components([
        {"type": "heading", "data": {"title": "<form action='https://evil'><input name=pw></form><img src=x onerror=alert(1)>Hi"}},
        {"type": "text", "data": {"content": {"html": "<script>alert(1)</script>"}}},
    ])
    title = rendered[0]["data"]["title"]
    assert "<form" not in title
    assert "onerror" not in title
    assert title.endswith("Hi")
    assert rendered[1]["data"]["content"] == ""


def test_first_image_ignores_malformed_gallery():
    assert extract_first_image([{"type": "gallery", "data": {"images": {"a": 1}}}]) is None
    assert extract_first_image([{"type": "gallery", "data": {"images": []}}]) is None
    assert extract_first_image([{"type": "gallery", "data": {"images": ["https://cdn.test/x.jpg"]}}]) is None
