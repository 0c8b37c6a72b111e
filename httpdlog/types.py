from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


# Field name -> un-escaped value for one matched log line
FieldMap = dict[str, str]


class PatternClass(Enum):
    """Shape of the value a field directive may capture.

    This is about what the value looks like in the line, not what it means.
    """
    TIMESTAMP = "timestamp"
    LITERAL_PERCENT = "literal_percent"
    NUMERIC = "numeric"
    SIZE_OR_DASH = "size_or_dash"
    TOKEN = "token"
    FREEFORM = "freeform"


@dataclass(frozen=True)
class LiteralDirective:
    """Text that must appear verbatim in the line (already unescaped)."""
    text: str


@dataclass(frozen=True)
class FieldDirective:
    """A named extraction point such as %h, %>s or %{Referer}i.

    - name: the directive text after the qualifier, used as the field key
    - qualifier: status-code condition like '!200,304', ignored for matching
    """
    name: str
    pattern_class: PatternClass
    qualifier: str | None = None


Directive = LiteralDirective | FieldDirective
