from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .config import Config
from .format import compile_format
from .matcher import CompiledMatcher, match
from .metrics import MetricsSink
from .rules import Rule, referenced_fields

logger = logging.getLogger(__name__)

PROCESS_ERROR_COUNTER = "httpd_log_process_error_count_total"
UPTIME_GAUGE = "httpd_log_uptime_seconds"
IDLETIME_GAUGE = "httpd_log_idletime_seconds"


@dataclass
class ProcessorStats:
    matched: int = 0
    unmatched: int = 0
    value_errors: int = 0
    errors: int = 0
    started_at: float = field(default_factory=time.time)
    # 0 until the first line is recorded
    last_processed_at: float = 0.0


@dataclass
class Processor:
    matcher: CompiledMatcher
    rules: list[Rule]
    sink: MetricsSink
    stats: ProcessorStats = field(default_factory=ProcessorStats)

    @classmethod
    def from_config(cls, config: Config, sink: MetricsSink) -> "Processor":
        """Compile the format and check it declares every field the counters read.

        Raises InvalidFormatError (or MissingFieldsError) before any line is read.
        """
        matcher = compile_format(config.log_format)
        rules = config.compile_rules()
        required = config.all_required_fields()
        required += [name for name in referenced_fields(rules) if name not in required]
        matcher.require_fields(required)

        for rule in rules:
            sink.describe(rule.name, rule.description or "", sorted(rule.labels))
        sink.describe(PROCESS_ERROR_COUNTER, "Log lines that failed with an unexpected error")
        processor = cls(matcher=matcher, rules=rules, sink=sink)
        sink.gauge(UPTIME_GAUGE, "Seconds since the exporter started", processor.uptime_seconds)
        sink.gauge(IDLETIME_GAUGE, "Seconds since the last log line was recorded", processor.idle_seconds)
        return processor

    def process_stream(self, lines: Iterable[str]) -> None:
        for raw_line in lines:
            try:
                self.process_line(raw_line)
            except Exception:
                self.stats.errors += 1
                self.sink.inc(PROCESS_ERROR_COUNTER, {}, 1.0)
                logger.exception("Unhandled error while processing log line: %s", raw_line.rstrip("\r\n"))

    def process_line(self, raw_line: str) -> bool:
        """Record counters for one line. Returns False if the line was skipped."""
        line = raw_line.rstrip("\r\n")
        fields = match(self.matcher, line)
        if fields is None:
            self.stats.unmatched += 1
            logger.warning("log not match: %s", line)
            return False

        # Compute everything first so a bad value never leaves counters half-updated
        try:
            increments = [(rule.name, *rule.values(fields)) for rule in self.rules]
        except ValueError as e:
            self.stats.value_errors += 1
            logger.warning("Unable to convert values from log (%s): %s", e, line)
            return False

        for name, labels, amount in increments:
            self.sink.inc(name, labels, amount)
        self.stats.matched += 1
        self.stats.last_processed_at = time.time()
        return True

    def uptime_seconds(self, now: Optional[float] = None) -> float:
        now = time.time() if now is None else now
        return now - self.stats.started_at

    def idle_seconds(self, now: Optional[float] = None) -> float:
        if not self.stats.last_processed_at:
            return 0.0
        now = time.time() if now is None else now
        return now - self.stats.last_processed_at
