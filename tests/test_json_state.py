"""Tests for embedded page-state extraction."""

import json

from ecom_crawler.crawler.document import SoupDocumentParser
from ecom_crawler.detectors.json_state import (
    JsonStateExtractor,
    balanced_json,
    extract_payload,
    is_state_script,
    iter_url_fields,
)


def test_balanced_json_ignores_brackets_in_strings():
    text = 'x = {"a": "}{]", "b": [1, {"c": "\\"}"}]}; trailing();'
    extracted = balanced_json(text)
    assert json.loads(extracted) == {"a": "}{]", "b": [1, {"c": '"}'}]}


def test_balanced_json_unterminated():
    assert balanced_json('{"a": [1, 2}') is None
    assert balanced_json('{"a": 1') is None
    assert balanced_json('no json here') is None


def test_extract_payload_after_marker_with_odd_spacing():
    script = 'window.__INITIAL_STATE__   =\n  {"page": {"url": "/p/123"}}  ;\nwindow.other = 1;'
    assert json.loads(extract_payload(script)) == {"page": {"url": "/p/123"}}


def test_extract_payload_falls_through_unassigned_marker():
    script = 'window.__INITIAL_STATE__ = {"page": {"url": "/p/9"}};\ndelete window.__PRELOADED_STATE__;'
    assert json.loads(extract_payload(script)) == {"page": {"url": "/p/9"}}
    assert extract_payload('if (window.__PRELOADED_STATE__) { hydrate(); }') is None


def test_extract_payload_plain_json_block():
    assert extract_payload('  {"a": 1}  ') == '{"a": 1}'


def test_is_state_script():
    assert is_state_script("application/json", "{}")
    assert is_state_script("application/ld+json", "{}")
    assert is_state_script(None, "window.__PRELOADED_STATE__ = {}")
    assert not is_state_script("text/javascript", "console.log(1)")


def test_iter_url_fields_walks_objects_and_lists():
    data = {
        "url": "/products/a",
        "items": [
            {"productUrl": "/products/b"},
            {"nested": {"link": "/products/c", "href": 5}},
            "plain",
        ],
        "link": {"href": "/products/d"},
    }
    assert list(iter_url_fields(data)) == ["/products/a", "/products/b", "/products/c", "/products/d"]


def test_iter_url_fields_depth_guard():
    data = {"url": "/top"}
    node = data
    for _ in range(10):
        node["child"] = {}
        node = node["child"]
    node["url"] = "/deep"

    assert list(iter_url_fields(data, max_depth=3)) == ["/top"]
    assert list(iter_url_fields(data, max_depth=20)) == ["/top", "/deep"]


def test_extract_records_products_and_skips_bad_blocks():
    html = (
        '<script type="application/json">{"items": [{"url": "/products/shoe-1"}]}</script>'
        '<script type="application/json">{not json</script>'
        '<script>window.__PRELOADED_STATE__ = {"product_url": "https://shop.test/products/shoe-2"};</script>'
        '<script>var ignored = {"url": "/products/never"};</script>'
    )
    document = SoupDocumentParser().parse(html)
    recorded = []

    def record(url, domain):
        recorded.append((url, domain))
        return True

    found = JsonStateExtractor().extract(document, "https://shop.test/collections/all", "shop.test", record)

    assert found == 2
    assert recorded == [
        ("https://shop.test/products/shoe-1", "shop.test"),
        ("https://shop.test/products/shoe-2", "shop.test"),
    ]
