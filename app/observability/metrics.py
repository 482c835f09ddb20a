"""Counters, gauges and latency timings for ingestion cycles and insight builds.

Every emission is logged at DEBUG under ``market_signal.metric``; when the
StatsD backend is selected the same point is also forwarded there. StatsD has
no tag support, so tags are folded into the metric name in sorted key order.
"""

from __future__ import annotations

import logging
import re
import secrets
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from app.config import settings

try:  # pragma: no cover - optional dependency
    from statsd import StatsClient
except Exception:  # pragma: no cover - optional dependency guard
    StatsClient = None  # type: ignore[assignment]

logger = logging.getLogger("app.metrics")

_UNSAFE = re.compile(r"[^A-Za-z0-9_\-]+")


@dataclass(frozen=True)
class MetricsConfig:
    backend: str = "stdout"
    namespace: str = "market_signal"
    disabled: bool = False
    sample_rate: float = 1.0
    statsd_host: str = "127.0.0.1"
    statsd_port: int = 8125
    default_tags: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_settings(cls) -> MetricsConfig:
        return cls(
            backend=(settings.metrics_backend or "stdout").lower(),
            namespace=settings.metrics_namespace or "market_signal",
            disabled=settings.metrics_disable,
            sample_rate=max(0.0, min(settings.metrics_sample_rate, 1.0)),
            statsd_host=settings.metrics_statsd_host,
            statsd_port=settings.metrics_statsd_port,
            default_tags={"env": settings.environment},
        )


class MetricsReporter:
    """Emitter with stdout and StatsD backends; counters and timings honour the sample rate."""

    def __init__(self, config: MetricsConfig | None = None, *, client: Any | None = None) -> None:
        self._config = config or MetricsConfig.from_settings()
        self._statsd = client
        if self._statsd is None and self._config.backend == "statsd" and not self._config.disabled:
            if StatsClient is None:
                logger.warning("statsd backend requested but statsd package is not installed.")
            else:
                try:
                    self._statsd = StatsClient(host=self._config.statsd_host, port=self._config.statsd_port, prefix="")
                except Exception as exc:  # pragma: no cover - socket setup failure
                    self._log_backend_error("statsd.init", exc)

    def timing(self, metric: str, value_ms: float, *, tags: dict[str, Any] | None = None) -> None:
        self._emit("timing", metric, value_ms, tags=tags)

    def gauge(self, metric: str, value: float, *, tags: dict[str, Any] | None = None) -> None:
        self._emit("gauge", metric, value, tags=tags)

    def increment(
        self, metric: str, value: float = 1.0, *, tags: dict[str, Any] | None = None
    ) -> None:
        self._emit("counter", metric, value, tags=tags)

    @contextmanager
    def timer(self, metric: str, *, tags: dict[str, Any] | None = None) -> Iterator[None]:
        """Record the wall time of the ``with`` block in milliseconds, even when it raises."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.timing(metric, (time.perf_counter() - start) * 1000, tags=tags)

    def _emit(
        self, metric_type: str, metric: str, value: float, *, tags: dict[str, Any] | None
    ) -> None:
        if self._config.disabled or value is None:
            return
        sampled = metric_type != "gauge" and self._config.sample_rate < 1.0
        sample_rate = self._config.sample_rate if sampled else 1.0
        if sampled:
            roll = secrets.randbelow(1_000_000) / 1_000_000
            if roll >= sample_rate:
                return
        name = self.qualified_name(metric)
        merged_tags = {**self._config.default_tags, **(tags or {})}
        payload = {
            "metric": name,
            "value": round(float(value), 4),
            "type": metric_type,
            "tags": merged_tags,
        }
        if sampled:
            payload["sample_rate"] = round(sample_rate, 4)
        logger.debug("market_signal.metric", extra={"metrics": payload})
        if self._statsd is not None:
            self._forward(metric_type, statsd_name(name, tags), value, sample_rate)

    def qualified_name(self, metric: str) -> str:
        namespace = self._config.namespace
        trimmed = (metric or "").strip()
        if trimmed.startswith(f"{namespace}."):
            return trimmed
        return f"{namespace}.{trimmed}" if trimmed else namespace

    def _forward(self, metric_type: str, name: str, value: float, sample_rate: float) -> None:
        try:
            if metric_type == "timing":
                self._statsd.timing(name, value, rate=sample_rate)
            elif metric_type == "gauge":
                self._statsd.gauge(name, value)
            else:
                self._statsd.incr(name, value, rate=sample_rate)
        except Exception as exc:  # pragma: no cover - UDP send failure
            self._log_backend_error(name, exc)

    def _log_backend_error(self, metric: str, exc: Exception) -> None:
        logger.warning(
            "metrics.backend_error",
            extra={"metric": metric, "backend": self._config.backend, "error": type(exc).__name__},
        )


def statsd_name(name: str, tags: dict[str, Any] | None) -> str:
    """``ns.ingestion.source.failed`` + ``{"source": "tc", "code": "FEED_503"}`` -> ``...failed.code_FEED_503.source_tc``."""
    if not tags:
        return name
    parts = [f"{_UNSAFE.sub('_', str(key))}_{_UNSAFE.sub('_', str(value))}" for key, value in sorted(tags.items())]
    return ".".join([name, *parts])


metrics = MetricsReporter()
