"""
Parsing of the serialized images column.
"""
import json

from core.image_list import is_valid_url, parse_images, serialize_images


def test_invalid_entries_are_dropped():
    raw = json.dumps(["https://a/b.jpg", "not a url", 42])
    assert parse_images(raw) == ["https://a/b.jpg"]


def test_serialize_then_parse_keeps_only_urls():
    assert parse_images(serialize_images(["https://a/b.jpg", "not a url", 42])) == ["https://a/b.jpg"]


def test_empty_values_parse_to_empty_list():
    for raw in (None, "", "   ", "null", b""):
        assert parse_images(raw) == []


def test_non_list_json_is_empty():
    assert parse_images('{"url": "https://a/b.jpg"}') == []
    assert parse_images('"https://a/b.jpg"') == []
    assert parse_images("17") == []


def test_garbage_text_is_empty():
    assert parse_images("[https://a/b.jpg") == []
    assert parse_images(b"\xff\xfe") == []


def test_bare_or_comma_separated_urls_are_not_lists():
    assert parse_images("https://a/b.jpg") == []
    assert parse_images("https://a/b.jpg,https://a/c.jpg") == []


def test_duplicates_are_kept():
    raw = json.dumps(["https://a/b.jpg", "https://a/b.jpg"])
    assert parse_images(raw) == ["https://a/b.jpg", "https://a/b.jpg"]


def test_decoded_list_is_accepted():
    assert parse_images(["http://cdn.example.com/x.png", None]) == ["http://cdn.example.com/x.png"]


def test_order_is_preserved():
    urls = [f"https://cdn.example.com/{i}.jpg" for i in range(5)]
    assert parse_images(serialize_images(urls)) == urls


def test_empty_list_serializes_to_null():
    assert serialize_images([]) is None
    assert serialize_images(["relative/path.jpg"]) is None


def test_url_validation():
    assert is_valid_url("https://example.com/a.jpg")
    assert not is_valid_url("/uploads/a.jpg")
    assert not is_valid_url("example.com/a.jpg")
    assert not is_valid_url(None)
