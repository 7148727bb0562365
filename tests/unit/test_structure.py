import pytest

import json_codec as jc
import json_scanner as js


def test_missing_closing_brace():
    with pytest.raises(js.ExpectedCommaOrBrace) as ei:
        jc.parse('{"a":1')
    assert ei.value.position == 6


def test_missing_comma_in_object():
    with pytest.raises(js.ExpectedCommaOrBrace):
        jc.parse('{"a":1 "b":2}')


def test_missing_comma_in_array():
    with pytest.raises(js.ExpectedCommaOrBracket):
        jc.parse("[1 2]")


def test_missing_closing_bracket():
    with pytest.raises(js.ExpectedCommaOrBracket):
        jc.parse("[1,2")


def test_missing_colon():
    with pytest.raises(js.ExpectedColon) as ei:
        jc.parse('{"a" 1}')
    assert "expecting \":\" at offset 5" in str(ei.value)


def test_truncated_literal():
    with pytest.raises(js.UnexpectedToken):
        jc.parse("tru")


@pytest.mark.parametrize("text", ["", "   ", "[1,]", "@", "{\"a\":}"])
def test_no_value(text):
    with pytest.raises(js.ExpectedValue):
        jc.parse(text)


def test_object_key_must_be_string():
    with pytest.raises(js.UnexpectedToken):
        jc.parse("{a:1}")


def test_trailing_data_rejected():
    with pytest.raises(js.TrailingData):
        jc.parse("[1] 2")


def test_nesting_limit():
    assert jc.parse("[[1]]", max_depth=2) == [[1]]
    with pytest.raises(js.NestingTooDeep):
        jc.parse("[[[1]]]", max_depth=2)


def test_default_nesting_limit_stops_adversarial_input():
    with pytest.raises(js.NestingTooDeep):
        jc.parse("[" * 5000)


def test_errors_surface_as_syntax_error():
    with pytest.raises(SyntaxError):
        jc.parse('{"a":1')


@pytest.mark.parametrize("text", ["[[[]]]", "[[{}]]", '{"a":{"b":{}}}'])
def test_nesting_limit_counts_empty_containers(text):
    with pytest.raises(js.NestingTooDeep):
        jc.parse(text, max_depth=2)
