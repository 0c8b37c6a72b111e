from __future__ import annotations

from typing import Mapping

from jinja2 import Environment, StrictUndefined, Template

"""Jinja2 environment and helpers for counter label templates.

The environment is created once at import time and reused to avoid per-line
construction overhead while recording counters.
"""

# Singleton environment reused across the process
JINJA_ENV: Environment = Environment(undefined=StrictUndefined, autoescape=False)


def compile_template(source: str) -> Template:
    """Compile a Jinja2 template from a string.
    """
    return JINJA_ENV.from_string(source)


def template_context(fields: Mapping[str, str]) -> dict[str, object]:
    """Expose fields as 'fields' plus top-level names where they are identifiers.

    Names such as '>s' or '{Referer}i' are only reachable as fields['>s'].
    """
    context: dict[str, object] = {k: v for k, v in fields.items() if k.isidentifier() and k != "fields"}
    context["fields"] = fields
    return context
