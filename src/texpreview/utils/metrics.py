"""Prometheus-style metrics for the preview service.

Provides metrics for:
- API request counts and latencies
- Preview renders by outcome
- Extracted blocks by kind
- Post-layout shrink operations
"""

import re
import time
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from texpreview.utils.logging import get_logger

logger = get_logger(__name__)


def _format_labels(labels: dict[str, str] | None) -> str:
    """Format labels as a Prometheus label set (empty when unlabeled)."""
    if not labels:
        return ""
    label_str = ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))
    return f"{{{label_str}}}"


class MetricsRegistry:
    """In-process metrics registry exportable as Prometheus text or JSON."""

    def __init__(self) -> None:
        self._counters: dict[str, dict[str, Any]] = {}
        self._histograms: dict[str, dict[str, Any]] = {}
        self._gauges: dict[str, dict[str, Any]] = {}

    def counter(
        self,
        name: str,
        value: float = 1.0,
        labels: dict[str, str] | None = None,
    ) -> None:
        """Increment a counter."""
        key = name + _format_labels(labels)
        entry = self._counters.setdefault(
            key, {"name": name, "labels": labels or {}, "value": 0.0}
        )
        entry["value"] += value

    def histogram(
        self,
        name: str,
        value: float,
        labels: dict[str, str] | None = None,
    ) -> None:
        """Record an observation."""
        key = name + _format_labels(labels)
        entry = self._histograms.setdefault(
            key,
            {"name": name, "labels": labels or {}, "sum": 0.0, "count": 0, "max": 0.0},
        )
        entry["sum"] += value
        entry["count"] += 1
        entry["max"] = max(entry["max"], value)

    def gauge(
        self,
        name: str,
        value: float,
        labels: dict[str, str] | None = None,
    ) -> None:
        """Set a gauge."""
        key = name + _format_labels(labels)
        self._gauges[key] = {"name": name, "labels": labels or {}, "value": value}

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> float:
        """Current value of a counter (0.0 if never incremented)."""
        entry = self._counters.get(name + _format_labels(labels))
        return entry["value"] if entry else 0.0

    def to_prometheus_format(self) -> str:
        """Export in Prometheus text exposition format."""
        lines: list[str] = []
        for data in self._counters.values():
            lines.append(f"{data['name']}{_format_labels(data['labels'])} {data['value']}")
        # Histograms are exported as sum/count pairs only
        for data in self._histograms.values():
            label_str = _format_labels(data["labels"])
            lines.append(f"{data['name']}_sum{label_str} {data['sum']}")
            lines.append(f"{data['name']}_count{label_str} {data['count']}")
        for data in self._gauges.values():
            lines.append(f"{data['name']}{_format_labels(data['labels'])} {data['value']}")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        """Export as a dictionary."""
        return {
            "counters": list(self._counters.values()),
            "histograms": [
                {
                    "name": h["name"],
                    "labels": h["labels"],
                    "sum": h["sum"],
                    "count": h["count"],
                    "max": h["max"],
                    "avg": h["sum"] / h["count"] if h["count"] > 0 else 0,
                }
                for h in self._histograms.values()
            ],
            "gauges": list(self._gauges.values()),
        }

    def reset(self) -> None:
        """Reset all metrics (for testing)."""
        self._counters.clear()
        self._histograms.clear()
        self._gauges.clear()


# Global metrics registry
_metrics = MetricsRegistry()


def get_metrics() -> MetricsRegistry:
    """Get the global metrics registry."""
    return _metrics


def record_request(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
) -> None:
    """Record HTTP request metrics."""
    labels = {"method": method, "path": _normalize_path(path), "status": str(status_code)}
    _metrics.counter("http_requests_total", labels=labels)
    _metrics.histogram("http_request_duration_ms", duration_ms, labels=labels)


def record_preview_render(
    status: str,
    duration_ms: float,
    blocks: int = 0,
) -> None:
    """Record a completed (or failed) preview render."""
    _metrics.counter("preview_renders_total", labels={"status": status})
    _metrics.histogram("preview_render_duration_ms", duration_ms)
    if blocks > 0:
        _metrics.histogram("preview_blocks_per_document", float(blocks))


def record_extraction(kind: str, count: int) -> None:
    """Record how many blocks of one kind were extracted."""
    if count > 0:
        _metrics.counter("preview_blocks_extracted_total", float(count), labels={"kind": kind})


def record_layout_shrink(target: str, scale: float) -> None:
    """Record a post-layout shrink of an overflowing element."""
    _metrics.counter("preview_layout_shrinks_total", labels={"target": target})
    _metrics.histogram("preview_layout_shrink_scale", scale, labels={"target": target})


def _normalize_path(path: str) -> str:
    """Replace numeric path segments so metrics stay low-cardinality."""
    return re.sub(r"/\d+", "/{id}", path)


class MetricsMiddleware(BaseHTTPMiddleware):
    """FastAPI middleware for automatic request metrics."""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        """Process request and record metrics."""
        start_time = time.time()
        response = await call_next(request)
        duration_ms = (time.time() - start_time) * 1000

        # Skip health checks for cleaner data
        if request.url.path not in ("/health", "/ready", "/metrics"):
            record_request(
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=duration_ms,
            )

        return response
