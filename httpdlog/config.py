from __future__ import annotations

import re
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigError
from .format import DEFAULT_REQUIRED_FIELDS, resolve_format
from .rules import CountRule, Rule, SumRule

_METRIC_NAME_RE = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")
_LABEL_NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

DEFAULT_LABELS: dict[str, str] = {
    "user": "{{ u }}",
    "path": "{{ U }}",
    "status": "{{ fields['>s'] }}",
}


class CounterConfig(BaseModel):
    """One counter fed by every matched line.

    - value: field to add (after 'scale'); when omitted the counter counts lines.
    - labels: label name -> Jinja2 template rendered from the line's fields.
    """
    name: str = Field(description="Counter name, e.g. httpd_log_count_total")
    description: str | None = Field(default=None, description="Optional help text for the counter")
    labels: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_LABELS))
    value: str | None = Field(default=None, description="Field whose numeric value is added")
    scale: float = Field(default=1.0, gt=0, description="Multiplier applied to the value")

    @field_validator("name")
    @classmethod
    def _validate_name(cls, v: str) -> str:
        if not _METRIC_NAME_RE.match(v):
            raise ValueError(f"invalid counter name {v!r}")
        return v

    @field_validator("labels")
    @classmethod
    def _validate_labels(cls, v: dict[str, str]) -> dict[str, str]:
        for name in v:
            if not _LABEL_NAME_RE.match(name) or name.startswith("__"):
                raise ValueError(f"invalid label name {name!r}")
        return v


def default_counters() -> list[CounterConfig]:
    return [
        CounterConfig(name="httpd_log_count_total", description="Number of requests"),
        CounterConfig(
            name="httpd_log_time_seconds_total",
            description="Time spent serving requests",
            value="D",
            scale=1e-6,
        ),
        CounterConfig(name="httpd_log_received_bytes_total", description="Bytes received", value="I"),
        CounterConfig(
            name="httpd_log_sent_bytes_total",
            description="Response bytes sent, excluding headers",
            value="B",
        ),
    ]


class Config(BaseModel):
    """Top-level configuration for an httpdlog run loaded from YAML."""
    format: str = Field(default="exporter", description="Preset name or raw mod_log_config format string")
    file: str = Field(default="-", description="Access log path or '-' for stdin")
    follow: bool = Field(default=False, description="Keep reading lines appended to 'file'")
    from_end: bool = Field(default=True, description="When following, skip lines already in the file")
    poll_interval: float = Field(default=1.0, gt=0)
    port: int | None = Field(default=None, ge=0, le=65535, description="Serve metrics over HTTP on this port")
    addr: str = Field(default="0.0.0.0", description="Address the metrics server binds to")
    required_fields: list[str] = Field(default_factory=lambda: list(DEFAULT_REQUIRED_FIELDS))
    counters: list[CounterConfig] = Field(default_factory=default_counters)

    @field_validator("format")
    @classmethod
    def _validate_format(cls, v: str) -> str:
        if not v:
            raise ValueError("'format' must not be empty")
        return v

    @field_validator("counters")
    @classmethod
    def _validate_counters(cls, v: list[CounterConfig]) -> list[CounterConfig]:
        seen: set[str] = set()
        for cc in v:
            key = cc.name if cc.name.endswith("_total") else cc.name + "_total"
            if key in seen:
                raise ValueError(f"counter {cc.name!r} is declared more than once")
            seen.add(key)
        return v

    @property
    def log_format(self) -> str:
        return resolve_format(self.format)

    def all_required_fields(self) -> list[str]:
        names: list[str] = []
        for name in [*self.required_fields, *(c.value for c in self.counters if c.value)]:
            if name not in names:
                names.append(name)
        return names

    def compile_rules(self) -> list[Rule]:
        compiled: list[Rule] = []
        for cc in self.counters:
            if cc.value is None:
                compiled.append(CountRule(name=cc.name, labels=dict(cc.labels), description=cc.description))
            else:
                compiled.append(
                    SumRule(
                        name=cc.name,
                        labels=dict(cc.labels),
                        description=cc.description,
                        value_field=cc.value,
                        scale=cc.scale,
                    )
                )
        return compiled


def load_config(path: str | Path) -> Config:
    """Load YAML config from 'path' and validate into a Config model."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must be a mapping, got {type(data).__name__}")
    try:
        return Config.model_validate(data)
    except ValidationError as e:
        # Re-raise with a cleaner message for CLI users
        raise ConfigError(str(e)) from e
