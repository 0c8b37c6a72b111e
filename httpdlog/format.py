"""Compile Apache mod_log_config format strings into line matchers.

See https://httpd.apache.org/docs/2.4/mod/mod_log_config.html#formats
"""

from __future__ import annotations

import logging
import re
from types import MappingProxyType

from .errors import InvalidFormatError
from .matcher import CompiledMatcher
from .types import Directive, FieldDirective, LiteralDirective, PatternClass

logger = logging.getLogger(__name__)

# %[qualifier](letter | >letter | % | {header}x | {header}^xx)
DIRECTIVE_RE = re.compile(
    r"%(?P<qualifier>!?\d+(?:,\d+)*)?"
    r"(?P<name>[<>]?[a-zA-Z]|%|\{[^}]+\}(?:\^[a-zA-Z]{2}|[a-zA-Z]))"
)

# Only these sequences are unescaped in literal text
_LITERAL_ESCAPE_RE = re.compile(r"\\([\"'\\t])")

FIELD_PATTERN_CLASSES: dict[str, PatternClass] = {
    "t": PatternClass.TIMESTAMP,
    "%": PatternClass.LITERAL_PERCENT,
    "b": PatternClass.SIZE_OR_DASH,
    # Strictly numeric values
    "B": PatternClass.NUMERIC,
    "D": PatternClass.NUMERIC,
    "k": PatternClass.NUMERIC,
    "m": PatternClass.NUMERIC,
    "p": PatternClass.NUMERIC,
    "P": PatternClass.NUMERIC,
    "s": PatternClass.NUMERIC,
    ">s": PatternClass.NUMERIC,
    "<s": PatternClass.NUMERIC,
    "I": PatternClass.NUMERIC,
    "O": PatternClass.NUMERIC,
    "S": PatternClass.NUMERIC,
    "T": PatternClass.NUMERIC,
    # Bare tokens without whitespace
    "a": PatternClass.TOKEN,
    "A": PatternClass.TOKEN,
    "H": PatternClass.TOKEN,
    "L": PatternClass.TOKEN,
    "q": PatternClass.TOKEN,
    "X": PatternClass.TOKEN,
}

CLASS_PATTERNS: dict[PatternClass, str] = {
    PatternClass.TIMESTAMP: r"\[\d{2}/[A-Za-z]{3}/\d{4}:\d{2}:\d{2}:\d{2} [+-]\d{4}\]",
    PatternClass.LITERAL_PERCENT: "%",
    PatternClass.NUMERIC: r"\d+",
    PatternClass.SIZE_OR_DASH: r"\d+|-",
    PatternClass.TOKEN: r"\S+",
    PatternClass.FREEFORM: r".+?",
}

FORMATS: dict[str, str] = {
    "common": '%h %l %u %t "%r" %>s %b',
    "vhost_common": '%v %h %l %u %t "%r" %>s %b',
    "combined": '%h %l %u %t "%r" %>s %b "%{Referer}i" "%{User-agent}i"',
    "combinedio": '%h %l %u %t "%r" %>s %b "%{Referer}i" "%{User-agent}i" %I %O',
    "exporter": '%h %l %u %t "%r" %>s %B %I %D "%U"',
}

# Fields the default counters read: sent bytes, user, microseconds taken,
# final status, received bytes and URL path
DEFAULT_REQUIRED_FIELDS: tuple[str, ...] = ("B", "u", "D", ">s", "I", "U")


def pattern_class_for(name: str) -> PatternClass:
    return FIELD_PATTERN_CLASSES.get(name, PatternClass.FREEFORM)


def unescape_literal(text: str) -> str:
    """Unescape \\" \\' \\\\ and \\t in literal format text."""
    return _LITERAL_ESCAPE_RE.sub(lambda m: "\t" if m.group(1) == "t" else m.group(1), text)


def resolve_format(value: str) -> str:
    """Return the preset format for a known name, otherwise 'value' itself."""
    return FORMATS.get(value, value)


def parse_format(fmt: str) -> list[Directive]:
    """Split a format string into literal and field directives.

    A '%' that does not start a directive is kept as literal text.
    """
    directives: list[Directive] = []
    pos = 0
    while True:
        start = fmt.find("%", pos)
        if start < 0:
            _append_literal(directives, fmt[pos:])
            return directives
        _append_literal(directives, fmt[pos:start])

        m = DIRECTIVE_RE.match(fmt, start)
        if m is None:
            logger.debug("Treating '%%' at offset %d of format as literal text", start)
            directives.append(LiteralDirective("%"))
            pos = start + 1
            continue
        name = m.group("name")
        pattern_class = pattern_class_for(name)
        if pattern_class is PatternClass.LITERAL_PERCENT:
            directives.append(LiteralDirective("%"))
        else:
            directives.append(FieldDirective(name=name, pattern_class=pattern_class, qualifier=m.group("qualifier")))
        pos = m.end()


def _append_literal(directives: list[Directive], raw: str) -> None:
    if raw:
        directives.append(LiteralDirective(unescape_literal(raw)))


def compile_format(fmt: str) -> CompiledMatcher:
    """Compile a format string into an anchored CompiledMatcher.

    Capture groups are numbered left to right from 1. When a field name is
    declared more than once the last declaration's group wins. A leading
    free-form field (such as %h) also absorbs any text before the real value,
    so only strict leading fields reject leading garbage.

    Raises InvalidFormatError if the generated pattern cannot be compiled.
    """
    directives = parse_format(fmt)
    parts: list[str] = [r"\A"]
    field_groups: dict[str, int] = {}
    group = 1
    for directive in directives:
        if isinstance(directive, LiteralDirective):
            parts.append(re.escape(directive.text))
            continue
        parts.append("(" + CLASS_PATTERNS[directive.pattern_class] + ")")
        if directive.name in field_groups:
            logger.warning("Field %r declared more than once in format, using the last one", directive.name)
        field_groups[directive.name] = group
        group += 1
    parts.append(r"\Z")
    source = "".join(parts)

    try:
        pattern = re.compile(source)
    except re.error as e:
        raise InvalidFormatError(f"Cannot build pattern for format {fmt!r}: {e}", fmt) from e

    logger.debug("Compiled format %r into %r", fmt, source)
    return CompiledMatcher(
        format=fmt,
        pattern=pattern,
        field_groups=MappingProxyType(field_groups),
        directives=tuple(directives),
    )
