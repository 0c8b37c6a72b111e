from __future__ import annotations

import pytest

from httpdlog.errors import InvalidFormatError, MissingFieldsError
from httpdlog.format import (
    CLASS_PATTERNS,
    DEFAULT_REQUIRED_FIELDS,
    FIELD_PATTERN_CLASSES,
    FORMATS,
    compile_format,
    parse_format,
    pattern_class_for,
    resolve_format,
    unescape_literal,
)
from httpdlog.types import FieldDirective, LiteralDirective, PatternClass

COMBINED_LINE = (
    '192.168.201.2 - alice [06/Apr/2024:11:28:58 +0800] "GET /foo/bar/baz HTTP/2.0" 200 3649 '
    '"https://example.com/" "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36"'
)


def test_rule_table_covers_every_class():
    assert set(CLASS_PATTERNS) == set(PatternClass)
    assert pattern_class_for("t") is PatternClass.TIMESTAMP
    assert pattern_class_for("b") is PatternClass.SIZE_OR_DASH
    assert pattern_class_for(">s") is PatternClass.NUMERIC
    assert pattern_class_for("s") is PatternClass.NUMERIC
    assert pattern_class_for("a") is PatternClass.TOKEN
    assert pattern_class_for("r") is PatternClass.FREEFORM
    assert pattern_class_for("{Referer}i") is PatternClass.FREEFORM
    assert FIELD_PATTERN_CLASSES["%"] is PatternClass.LITERAL_PERCENT


def test_parse_format_splits_literals_and_fields():
    directives = parse_format('%h "%r" %>s')
    assert directives == [
        FieldDirective(name="h", pattern_class=PatternClass.FREEFORM),
        LiteralDirective(' "'),
        FieldDirective(name="r", pattern_class=PatternClass.FREEFORM),
        LiteralDirective('" '),
        FieldDirective(name=">s", pattern_class=PatternClass.NUMERIC),
    ]


def test_parse_format_keeps_qualifier_out_of_name():
    directives = parse_format("%!200,304U %400,501{User-agent}i")
    fields = [d for d in directives if isinstance(d, FieldDirective)]
    assert [(f.name, f.qualifier) for f in fields] == [("U", "!200,304"), ("{User-agent}i", "400,501")]


def test_parse_format_header_with_caret_classifier():
    directives = parse_format("%{X-Trace}^ti|")
    assert directives[0] == FieldDirective(name="{X-Trace}^ti", pattern_class=PatternClass.FREEFORM)
    assert directives[1] == LiteralDirective("|")


def test_literal_percent_contributes_no_field():
    matcher = compile_format("100%% %s")
    assert matcher.field_names == ("s",)
    assert matcher.match("100% 200") == {"s": "200"}
    assert matcher.match("100 200") is None


@pytest.mark.parametrize(
    "fmt,line,expected",
    [
        ("50% off %h", "50% off host", {"h": "host"}),
        ("%h %", "host %", {"h": "host"}),
        ("%{Host", "%{Host", {}),
        ("%h %{}i", "host %{}i", {"h": "host"}),
        ("%-h", "%-h", {}),
    ],
)
def test_stray_percent_is_literal_text(fmt, line, expected):
    assert compile_format(fmt).match(line) == expected


def test_unbuildable_pattern_raises(monkeypatch):
    monkeypatch.setitem(CLASS_PATTERNS, PatternClass.FREEFORM, "(")
    with pytest.raises(InvalidFormatError) as exc:
        compile_format("%h")
    assert exc.value.format == "%h"


def test_unescape_literal_only_handles_quotes_backslash_and_tab():
    assert unescape_literal(r"""\"a\' \\ \t \n""") == "\"a' \\ \t \\n"
    assert unescape_literal("plain") == "plain"


def test_unescape_literal_is_single_pass():
    # An escaped backslash followed by t stays a backslash and a letter
    assert unescape_literal("\\\\t") == "\\t"


def test_literal_metacharacters_match_verbatim():
    matcher = compile_format("(%h) [*] %s.")
    assert matcher.match("(host) [*] 200.") == {"h": "host", "s": "200"}
    assert matcher.match("(host) x 200.") is None


def test_capture_indices_follow_declaration_order():
    matcher = compile_format(FORMATS["common"])
    assert dict(matcher.field_groups) == {"h": 1, "l": 2, "u": 3, "t": 4, "r": 5, ">s": 6, "b": 7}
    assert matcher.pattern.groups == 7


def test_duplicate_field_last_declaration_wins():
    matcher = compile_format("%{X}i %{X}i")
    assert matcher.field_names == ("{X}i",)
    assert dict(matcher.field_groups) == {"{X}i": 2}
    assert matcher.match("first second") == {"{X}i": "second"}


def test_zero_field_format_matches_literal_only():
    matcher = compile_format("hello [world]")
    assert matcher.field_names == ()
    assert matcher.match("hello [world]") == {}
    assert matcher.match("hello [world] ") is None
    assert matcher.match("hello world") is None


def test_empty_format_matches_empty_line():
    matcher = compile_format("")
    assert matcher.match("") == {}
    assert matcher.match("x") is None


def test_host_and_ident():
    assert compile_format("%h %l").match("192.168.201.2 -") == {"h": "192.168.201.2", "l": "-"}


def test_host_ident_user_time():
    matcher = compile_format("%h %l %u %t")
    assert matcher.match("192.168.201.2 - alice [06/Apr/2024:11:28:58 +0800]") == {
        "h": "192.168.201.2",
        "l": "-",
        "u": "alice",
        "t": "[06/Apr/2024:11:28:58 +0800]",
    }


def test_escaped_format_quotes():
    matcher = compile_format(r"%t %u %>s %I %B %D \"%U\"")
    assert matcher.match('[06/Apr/2024:17:00:45 +0800] alice 200 441 856 5010160 "/foo/bar/baz"') == {
        "t": "[06/Apr/2024:17:00:45 +0800]",
        "u": "alice",
        ">s": "200",
        "I": "441",
        "B": "856",
        "D": "5010160",
        "U": "/foo/bar/baz",
    }


def test_combined_with_escaped_quote_in_user_agent():
    matcher = compile_format(FORMATS["combined"])
    line = (
        '192.168.201.2 - alice [06/Apr/2024:11:28:58 +0800] "GET /foo/bar/baz HTTP/2.0" 200 3649 '
        '"https://example.com/" "curl\\""'
    )
    assert matcher.match(line) == {
        "h": "192.168.201.2",
        "l": "-",
        "u": "alice",
        "t": "[06/Apr/2024:11:28:58 +0800]",
        "r": "GET /foo/bar/baz HTTP/2.0",
        ">s": "200",
        "b": "3649",
        "{Referer}i": "https://example.com/",
        "{User-agent}i": 'curl"',
    }


def test_combined_with_browser_user_agent():
    fields = compile_format(FORMATS["combined"]).match(COMBINED_LINE)
    assert fields is not None
    assert fields["r"] == "GET /foo/bar/baz HTTP/2.0"
    assert fields["{User-agent}i"].startswith("Mozilla/5.0 (Macintosh;")
    assert fields["{User-agent}i"].endswith("Safari/537.36")


def test_trailing_garbage_does_not_match():
    matcher = compile_format(FORMATS["common"])
    line = '127.0.0.1 - - [18/Feb/2012:10:25:43 -0500] "GET / HTTP/1.1" 200 561'
    assert matcher.match(line) is not None
    assert matcher.match(line + " junk") is None


def test_leading_garbage():
    # A strict leading field rejects it
    assert compile_format("%>s %b").match("x 200 5") is None
    # A free-form leading field absorbs it into the first fields
    fields = compile_format(FORMATS["common"]).match(
        'junk 127.0.0.1 - - [18/Feb/2012:10:25:43 -0500] "GET / HTTP/1.1" 200 561'
    )
    assert fields is not None
    assert (fields["h"], fields["l"]) == ("junk", "127.0.0.1")


def test_truncated_line_does_not_match():
    matcher = compile_format(FORMATS["combined"])
    assert matcher.match(COMBINED_LINE[:60]) is None
    assert matcher.match(COMBINED_LINE[:-1]) is None


def test_size_accepts_dash_but_numeric_does_not():
    assert compile_format("%b").match("-") == {"b": "-"}
    assert compile_format("%B").match("-") is None
    assert compile_format("%>s").match("20x") is None


def test_timestamp_shape():
    matcher = compile_format("%t")
    assert matcher.match("[18/Feb/2012:10:25:43 -0500]") is not None
    assert matcher.match("[18/Feb/2012:10:25:43]") is None
    assert matcher.match("18/Feb/2012:10:25:43 +0000") is None


def test_token_fields_reject_whitespace():
    assert compile_format("%a").match("10.0.0.1") == {"a": "10.0.0.1"}
    assert compile_format("%a").match("10.0.0.1 x") is None


def test_missing_required_fields_listed_in_order():
    matcher = compile_format("%h %l")
    assert matcher.missing_fields(DEFAULT_REQUIRED_FIELDS) == ["B", "u", "D", ">s", "I", "U"]
    with pytest.raises(MissingFieldsError) as exc:
        matcher.require_fields(DEFAULT_REQUIRED_FIELDS)
    assert exc.value.missing == ("B", "u", "D", ">s", "I", "U")
    assert str(exc.value) == "Missing required format fields: B, u, D, >s, I, U"
    assert isinstance(exc.value, InvalidFormatError)


def test_exporter_preset_has_default_required_fields():
    compile_format(FORMATS["exporter"]).require_fields(DEFAULT_REQUIRED_FIELDS)


def test_resolve_format():
    assert resolve_format("common") == FORMATS["common"]
    assert resolve_format("%h") == "%h"


@pytest.mark.parametrize(
    "values",
    [
        {"h": "10.0.0.1", "u": "bob", "r": "POST /api HTTP/1.1", ">s": "201", "b": "-"},
        {"h": "example.org", "u": "-", "r": "GET / HTTP/1.0", ">s": "404", "b": "0"},
        {"h": "::1", "u": "carol smith", "r": "GET /a b HTTP/2", ">s": "500", "b": "123456"},
    ],
)
def test_values_round_trip(values):
    matcher = compile_format('%h %u "%r" %>s %b')
    line = '{h} {u} "{r}" {s} {b}'.format(s=values[">s"], **{k: v for k, v in values.items() if k != ">s"})
    assert matcher.match(line) == values


def test_escaped_control_characters_are_resolved_in_values():
    matcher = compile_format('"%{User-agent}i"')
    assert matcher.match('"line1\\nline2\\ttab"') == {"{User-agent}i": "line1\nline2\ttab"}
