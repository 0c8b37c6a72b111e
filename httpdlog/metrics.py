from __future__ import annotations

import threading
from typing import Callable, Iterable, Mapping, Optional, Protocol

from prometheus_client import CollectorRegistry, Counter, Gauge


class MetricsSink(Protocol):
    """Anything that can receive counter increments and expose gauges."""

    def describe(self, name: str, text: str, labelnames: Iterable[str] = ()) -> None:
        ...

    def inc(self, name: str, labels: Mapping[str, str], amount: float = 1.0) -> None:
        ...

    def gauge(self, name: str, text: str, func: Callable[[], float]) -> None:
        ...


def _sample_name(name: str) -> str:
    # prometheus_client exposes counters with a '_total' suffix
    return name if name.endswith("_total") else name + "_total"


class PrometheusSink:
    """Counters and gauges registered on an explicitly passed registry.

    Counters not described up front are created on first use with the label
    names of that first increment.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()
        self._lock = threading.Lock()
        self._counters: dict[str, Counter] = {}
        self._labelnames: dict[str, tuple[str, ...]] = {}
        self._gauges: dict[str, Gauge] = {}

    def describe(self, name: str, text: str, labelnames: Iterable[str] = ()) -> None:
        with self._lock:
            self._counter(name, text, tuple(labelnames))

    def _counter(self, name: str, text: str, labelnames: tuple[str, ...]) -> Counter:
        counter = self._counters.get(name)
        if counter is None:
            counter = Counter(name, text, labelnames=labelnames, registry=self.registry)
            self._counters[name] = counter
            self._labelnames[name] = labelnames
        return counter

    def inc(self, name: str, labels: Mapping[str, str], amount: float = 1.0) -> None:
        with self._lock:
            counter = self._counter(name, "", tuple(sorted(labels)))
            labelnames = self._labelnames[name]
        if set(labels) != set(labelnames):
            raise ValueError(f"Counter {name} expects labels {list(labelnames)}, got {sorted(labels)}")
        if labelnames:
            counter.labels(**labels).inc(amount)
        else:
            counter.inc(amount)

    def gauge(self, name: str, text: str, func: Callable[[], float]) -> None:
        with self._lock:
            gauge = self._gauges.get(name)
            if gauge is None:
                gauge = Gauge(name, text, registry=self.registry)
                self._gauges[name] = gauge
        gauge.set_function(func)

    def value(self, name: str, **labels: str) -> float:
        value = self.registry.get_sample_value(_sample_name(name), labels)
        return 0.0 if value is None else value

    def snapshot(self) -> dict[str, dict[str, object]]:
        """Plain nested dicts suitable for YAML output."""
        result: dict[str, dict[str, object]] = {}
        for metric in self.registry.collect():
            if metric.type == "counter":
                key = metric.name + "_total"
                wanted = key
            elif metric.type == "gauge":
                key = wanted = metric.name
            else:
                continue
            series = sorted(
                (
                    {"labels": dict(sample.labels), "value": float(sample.value)}
                    for sample in metric.samples
                    if sample.name == wanted
                ),
                key=lambda s: sorted(s["labels"].items()),
            )
            entry: dict[str, object] = {"type": metric.type, "series": series}
            if metric.documentation:
                entry["description"] = metric.documentation
            result[key] = entry
        return dict(sorted(result.items()))
