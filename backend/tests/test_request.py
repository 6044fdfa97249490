from crudadmin.admin.request import flatten_nested, is_truthy, parse_nested
from tests.fixtures.context import make_request


def test_parse_nested_expands_brackets_and_lists():
    parsed = parse_nested(
        [
            ("filter[title][value]", "news"),
            ("filter[_page]", "2"),
            ("idx[]", "1"),
            ("idx[]", "3"),
            ("plain", "x"),
        ]
    )
    assert parsed == {
        "filter": {"title": {"value": "news"}, "_page": "2"},
        "idx": ["1", "3"],
        "plain": "x",
    }


def test_flatten_nested_is_query_string_friendly():
    pairs = flatten_nested({"filter": {"title": {"value": "a"}, "_page": 2}, "idx": ["1", "2"], "skip": None, "on": True})
    assert ("filter[title][value]", "a") in pairs
    assert ("filter[_page]", 2) in pairs
    assert pairs.count(("idx[]", "1")) == 1
    assert ("on", "1") in pairs
    assert all(name != "skip" for name, _ in pairs)


def test_lookup_order_is_attributes_then_query_then_body():
    request = make_request(
        "POST",
        query={"id": "from-query", "q": "query"},
        body={"id": "from-body", "q": "body", "b": "body"},
        attributes={"id": "from-route"},
    )
    assert request.get("id") == "from-route"
    assert request.get("q") == "query"
    assert request.get("b") == "body"
    assert request.get("missing", "default") == "default"
    assert request.has("b")
    assert not request.has("missing")


def test_rest_method_override_only_applies_to_post():
    assert make_request("POST", body={"_method": "delete"}).get_rest_method() == "DELETE"
    assert make_request("POST").get_rest_method() == "POST"
    assert make_request("GET", query={"_method": "DELETE"}).get_rest_method() == "GET"


def test_xml_http_request_detection():
    assert make_request(headers={"X-Requested-With": "XMLHttpRequest"}).is_xml_http_request()
    assert make_request(query={"_xml_http_request": "true"}).is_xml_http_request()
    assert not make_request().is_xml_http_request()


def test_get_list_normalizes_scalars():
    request = make_request("POST", body={"idx": "4", "many": ["1", "2"]})
    assert request.get_list("idx") == ["4"]
    assert request.get_list("many") == ["1", "2"]
    assert request.get_list("none") == []


def test_is_truthy():
    for value in ("1", "true", "on", "yes", "ok", True):
        assert is_truthy(value)
    for value in ("0", "", None, "false", False):
        assert not is_truthy(value)
