from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Pattern

from .errors import MissingFieldsError
from .types import Directive, FieldMap

# Escapes a log writer may use inside a field value
_VALUE_ESCAPES = {
    "b": "\b",
    "t": "\t",
    "n": "\n",
    "r": "\r",
    "f": "\f",
}


def unescape_value(value: str) -> str:
    """Resolve backslash escapes in an extracted field value.

    \\b \\t \\n \\r \\f become control characters, a backslash before any other
    character yields that character, and a trailing lone backslash is dropped.
    """
    if "\\" not in value:
        return value
    out: list[str] = []
    escape = False
    for ch in value:
        if escape:
            out.append(_VALUE_ESCAPES.get(ch, ch))
            escape = False
        elif ch == "\\":
            escape = True
        else:
            out.append(ch)
    return "".join(out)


@dataclass(frozen=True)
class CompiledMatcher:
    """A format string compiled into an anchored pattern.

    Instances are immutable and may be shared between threads.
    """
    format: str
    pattern: Pattern[str]
    # Field name -> capture group index, in declaration order
    field_groups: Mapping[str, int]
    directives: tuple[Directive, ...] = ()

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(self.field_groups)

    def match(self, line: str) -> Optional[FieldMap]:
        return match(self, line)

    def missing_fields(self, required: Iterable[str]) -> list[str]:
        missing: list[str] = []
        for name in required:
            if name not in self.field_groups and name not in missing:
                missing.append(name)
        return missing

    def require_fields(self, required: Iterable[str]) -> None:
        """Raise MissingFieldsError unless every required name is declared."""
        missing = self.missing_fields(required)
        if missing:
            raise MissingFieldsError(missing, self.format)


def match(compiled: CompiledMatcher, line: str) -> Optional[FieldMap]:
    """Match a whole line and return its fields, or None if it does not fit."""
    m: Optional[re.Match[str]] = compiled.pattern.fullmatch(line)
    if m is None:
        return None
    return {name: unescape_value(m.group(index) or "") for name, index in compiled.field_groups.items()}
