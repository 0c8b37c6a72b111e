from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from jinja2 import Template, meta, nodes

from .jinja import JINJA_ENV, compile_template, template_context
from .metrics import MetricsSink

logger = logging.getLogger(__name__)


def to_number(raw: str) -> float:
    """Convert a field value for counting. '-' means no data and counts as 0."""
    if raw == "-":
        return 0.0
    value = float(raw)
    if not math.isfinite(value):
        raise ValueError(f"non-finite value {raw!r}")
    return value


class Rule:
    """Abstract base for turning a matched line into a counter increment.

    values() computes (labels, amount) without side effects so a caller can
    validate every rule before recording anything; apply() records it.
    """
    name: str
    labels: dict[str, str]
    description: str | None

    def values(self, fields: Mapping[str, str]) -> tuple[dict[str, str], float]:
        raise NotImplementedError

    def referenced_fields(self) -> set[str]:
        raise NotImplementedError

    def apply(self, fields: Mapping[str, str], sink: MetricsSink) -> None:
        labels, amount = self.values(fields)
        sink.inc(self.name, labels, amount)


@dataclass
class BaseCounterRule(Rule):
    """Counter whose label values are rendered from Jinja2 templates."""
    name: str
    labels: dict[str, str] = field(default_factory=dict)
    description: str | None = None
    _compiled_labels: dict[str, Template] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._compiled_labels = {k: compile_template(v) for k, v in self.labels.items()}

    def render_labels(self, fields: Mapping[str, str]) -> dict[str, str]:
        context = template_context(fields)
        return {k: t.render(**context) for k, t in self._compiled_labels.items()}

    def referenced_fields(self) -> set[str]:
        """Fields the templates read, as top-level names or fields['name'].

        Keys computed at render time cannot be known here and are skipped.
        """
        names: set[str] = set()
        for source in self.labels.values():
            ast = JINJA_ENV.parse(source)
            names |= meta.find_undeclared_variables(ast) - {"fields"}
            for node in ast.find_all(nodes.Getitem):
                if not (isinstance(node.node, nodes.Name) and node.node.name == "fields"):
                    continue
                if isinstance(node.arg, nodes.Const) and isinstance(node.arg.value, str):
                    names.add(node.arg.value)
        return names


@dataclass
class CountRule(BaseCounterRule):
    """Increment by one for every matched line."""
    def values(self, fields: Mapping[str, str]) -> tuple[dict[str, str], float]:
        return self.render_labels(fields), 1.0


@dataclass
class SumRule(BaseCounterRule):
    """Add the numeric value of one field, multiplied by 'scale'."""
    value_field: str = ""
    scale: float = 1.0

    def values(self, fields: Mapping[str, str]) -> tuple[dict[str, str], float]:
        raw = fields[self.value_field]
        try:
            amount = to_number(raw) * self.scale
        except ValueError:
            raise ValueError(f"field {self.value_field!r} is not numeric: {raw!r}") from None
        if amount < 0:
            raise ValueError(f"field {self.value_field!r} is negative: {raw!r}")
        return self.render_labels(fields), amount

    def referenced_fields(self) -> set[str]:
        return super().referenced_fields() | {self.value_field}


def referenced_fields(rules: Iterable[Rule]) -> list[str]:
    names: set[str] = set()
    for rule in rules:
        names |= rule.referenced_fields()
    return sorted(names)
