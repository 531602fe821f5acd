from core.json_parser import (
    coerce_bool,
    coerce_int,
    coerce_optional_id,
    coerce_str,
    parse_json_from_response,
)


def test_plain_object():
    assert parse_json_from_response('{"hasChange": true, "confidence": 90}') == {
        "hasChange": True,
        "confidence": 90,
    }


def test_object_wrapped_in_prose():
    content = 'Sure! Here is my answer: {"projectId": "P1", "confidence": 80} Hope it helps.'
    assert parse_json_from_response(content) == {"projectId": "P1", "confidence": 80}


def test_markdown_fence():
    content = '```json\n{"reasoning": "same file", "hasChange": false}\n```'
    assert parse_json_from_response(content)["hasChange"] is False


def test_braces_inside_strings():
    content = 'result: {"reasoning": "title contains } and {", "confidence": 10}'
    parsed = parse_json_from_response(content)
    assert parsed["reasoning"] == "title contains } and {"
    assert parsed["confidence"] == 10


def test_unparseable_returns_none():
    assert parse_json_from_response("I cannot decide.") is None
    assert parse_json_from_response("{not json}") is None
    assert parse_json_from_response("") is None
    assert parse_json_from_response(None) is None


def test_coerce_helpers():
    assert coerce_bool("yes") is True
    assert coerce_bool("maybe", default=True) is True
    assert coerce_bool(0) is False

    assert coerce_int("87.6") == 88
    assert coerce_int(250) == 100
    assert coerce_int(-5) == 0
    assert coerce_int("high", default=50) == 50
    assert coerce_int(True, default=7) == 7

    assert coerce_str(None, default="n/a") == "n/a"
    assert coerce_str(12) == "12"

    assert coerce_optional_id(3) == "3"
    assert coerce_optional_id("null") is None
    assert coerce_optional_id("  ") is None
    assert coerce_optional_id(None) is None


def test_coerce_int_rejects_non_finite_numbers():
    parsed = parse_json_from_response('{"a": Infinity, "b": 1e999, "c": NaN, "d": -Infinity}')

    assert coerce_int(parsed["a"], default=50) == 50
    assert coerce_int(parsed["b"]) == 0
    assert coerce_int(parsed["c"], default=7) == 7
    assert coerce_int(parsed["d"], default=3) == 3
    assert coerce_int("inf", default=9) == 9
