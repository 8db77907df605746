"""JSON logging, request ids and in-process Prometheus metrics.

Log lines carry the current request id. Work that leaves the request (the
follow-up dispatcher thread, for one) binds the id it was started under
with :func:`bind_request_id` so its lines still correlate.
"""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Tuple

from flask import g, has_request_context, request


_REQUEST_ID: contextvars.ContextVar[str] = contextvars.ContextVar("crm_request_id", default="")

# Attributes every LogRecord has; anything else came in through ``extra=``.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def set_log_request_id(request_id: str | None) -> None:
    _REQUEST_ID.set((request_id or "").strip())


@contextlib.contextmanager
def bind_request_id(request_id: str | None):
    token = _REQUEST_ID.set((request_id or "").strip())
    try:
        yield _REQUEST_ID.get()
    finally:
        _REQUEST_ID.reset(token)


def current_request_id(default: str | None = None) -> str:
    if has_request_context() and getattr(g, "request_id", None):
        return g.request_id
    return _REQUEST_ID.get() or (default or "n/a")


def ensure_request_id() -> str:
    request_id = getattr(g, "request_id", None)
    if not request_id:
        request_id = (request.headers.get("X-Request-Id") or "").strip() or str(uuid.uuid4())
        g.request_id = request_id
    set_log_request_id(request_id)
    return request_id


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, object] = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": current_request_id(default=getattr(record, "request_id", None)),
        }
        if has_request_context():
            entry["method"] = request.method
            entry["path"] = request.path
        for key, value in vars(record).items():
            if key in _RECORD_ATTRS or key.startswith("_") or key in entry:
                continue
            entry[key] = value
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def configure_json_logging(app) -> None:
    if not app.config.get("LOG_JSON", True):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))
    app.logger.handlers = []
    app.logger.propagate = True


# -- metrics -------------------------------------------------------------

LabelKey = Tuple[str, ...]


def _escape(value: object) -> str:
    return str(value).replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _sample(name: str, value: float, labels: Dict[str, object]) -> str:
    if not labels:
        return f"{name} {value:g}"
    blob = ",".join(f'{key}="{_escape(val)}"' for key, val in labels.items())
    return f"{name}{{{blob}}} {value:g}"


class Counter:
    kind = "counter"

    def __init__(self, name: str, help_text: str, labels: Iterable[str] = ()) -> None:
        self.name = name
        self.help_text = help_text
        self.label_names = tuple(labels)
        self.values: Dict[LabelKey, float] = {}

    def inc(self, amount: float = 1, **labels: object) -> None:
        key = tuple(str(labels.get(name, "unknown")) for name in self.label_names)
        self.values[key] = self.values.get(key, 0) + amount

    def total(self) -> float:
        return sum(self.values.values())

    def by_label(self) -> Dict[str, float]:
        return {key[0]: value for key, value in self.values.items()}

    def render(self) -> List[str]:
        if not self.label_names:
            return [_sample(self.name, self.values.get((), 0), {})]
        return [
            _sample(self.name, value, dict(zip(self.label_names, key))) for key, value in sorted(self.values.items())
        ]


class Histogram:
    kind = "histogram"

    def __init__(self, name: str, help_text: str, buckets: Iterable[float], labels: Iterable[str] = ()) -> None:
        self.name = name
        self.help_text = help_text
        self.buckets = tuple(sorted(buckets))
        self.label_names = tuple(labels)
        self.series: Dict[LabelKey, dict] = {}

    def observe(self, value: float, **labels: object) -> None:
        key = tuple(str(labels.get(name, "unknown")) for name in self.label_names)
        series = self.series.setdefault(key, {"count": 0, "sum": 0.0, "le": [0] * len(self.buckets)})
        value = max(0.0, float(value))
        series["count"] += 1
        series["sum"] += value
        for index, bound in enumerate(self.buckets):
            if value <= bound:
                series["le"][index] += 1

    def render(self) -> List[str]:
        lines = []
        for key, series in sorted(self.series.items()):
            labels = dict(zip(self.label_names, key))
            for bound, count in zip(self.buckets, series["le"]):
                lines.append(_sample(f"{self.name}_bucket", count, {**labels, "le": f"{bound:g}"}))
            lines.append(_sample(f"{self.name}_bucket", series["count"], {**labels, "le": "+Inf"}))
            lines.append(_sample(f"{self.name}_sum", series["sum"], labels))
            lines.append(_sample(f"{self.name}_count", series["count"], labels))
        return lines


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.http_requests = Counter(
            "http_request_total", "Total HTTP requests by method, route and status.", ("method", "route", "status")
        )
        self.http_duration = Histogram(
            "http_request_duration_ms",
            "HTTP request duration in milliseconds.",
            (5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000),
            ("method", "route"),
        )
        self.offer_saves = Counter("offer_saves_total", "Offer save attempts by result.", ("result",))
        self.offer_save_duration = Histogram(
            "offer_save_duration_ms",
            "Offer save orchestration duration in milliseconds.",
            (10, 25, 50, 100, 250, 500, 1000, 2500, 5000),
        )
        self.detail_deletion_failed = Counter(
            "offer_detail_deletion_failed_total", "Detail deletions that failed and were skipped."
        )
        self.realtime_delivered = Counter(
            "realtime_delivered_total", "Row change events delivered to subscribers.", ("table", "event")
        )
        self.realtime_handler_failed = Counter("realtime_handler_failed_total", "Subscriber handlers that raised.")
        self.followup_tasks = Counter(
            "followup_tasks_total", "Follow-up tasks created after offer saves, by result.", ("result",)
        )
        self.domain_events = Counter("domain_event_emitted_total", "Domain events published, by type.", ("event_type",))

    def _metrics(self):
        return [value for value in vars(self).values() if isinstance(value, (Counter, Histogram))]

    def record(self, metric, value: float = 1, **labels: object) -> None:
        with self._lock:
            if isinstance(metric, Histogram):
                metric.observe(value, **labels)
            else:
                metric.inc(value, **labels)

    def snapshot(self) -> dict:
        with self._lock:
            errors = sum(value for key, value in self.http_requests.values.items() if int(key[2]) >= 400)
            routes: Dict[str, dict] = {}
            for (method, route), series in self.http_duration.series.items():
                routes[f"{method} {route}"] = {
                    "requests": series["count"],
                    "avg_latency_ms": round(series["sum"] / series["count"], 2) if series["count"] else 0.0,
                }
            return {
                "requests_total": int(self.http_requests.total()),
                "errors_total": int(errors),
                "routes": routes,
                "offer_saves": self.offer_saves.by_label(),
                "detail_deletion_failed_total": int(self.detail_deletion_failed.total()),
                "realtime_delivered_total": int(self.realtime_delivered.total()),
                "realtime_handler_failed_total": int(self.realtime_handler_failed.total()),
                "followup_tasks": self.followup_tasks.by_label(),
                "domain_events": self.domain_events.by_label(),
            }

    def render(self) -> str:
        lines: List[str] = []
        with self._lock:
            for metric in self._metrics():
                lines.append(f"# HELP {metric.name} {metric.help_text}")
                lines.append(f"# TYPE {metric.name} {metric.kind}")
                lines.extend(metric.render())
        return "\n".join(lines) + "\n"


_METRICS = MetricsRegistry()


def mark_request_start() -> None:
    g._request_started_at = time.perf_counter()


def observe_response(response):
    started = getattr(g, "_request_started_at", None)
    elapsed_ms = (time.perf_counter() - started) * 1000.0 if started else 0.0
    route = request.url_rule.rule if request.url_rule is not None else request.path
    _METRICS.record(_METRICS.http_requests, method=request.method, route=route, status=response.status_code)
    _METRICS.record(_METRICS.http_duration, elapsed_ms, method=request.method, route=route)
    response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"
    return response


def observe_offer_save(result: str, duration_ms: float) -> None:
    _METRICS.record(_METRICS.offer_saves, result=result)
    _METRICS.record(_METRICS.offer_save_duration, duration_ms)


def observe_detail_deletion_failed(count: int = 1) -> None:
    _METRICS.record(_METRICS.detail_deletion_failed, count)


def observe_realtime_delivered(table: str, event_type: str) -> None:
    _METRICS.record(_METRICS.realtime_delivered, table=table, event=event_type)


def observe_realtime_handler_failed(count: int = 1) -> None:
    _METRICS.record(_METRICS.realtime_handler_failed, count)


def observe_followup_task(result: str) -> None:
    _METRICS.record(_METRICS.followup_tasks, result=result)


def observe_domain_event_emitted(event_type: str) -> None:
    _METRICS.record(_METRICS.domain_events, event_type=event_type)


def metrics_snapshot() -> dict:
    return _METRICS.snapshot()


def prometheus_metrics_text() -> str:
    return _METRICS.render()


def reset_metrics_for_tests() -> None:
    global _METRICS
    _METRICS = MetricsRegistry()
