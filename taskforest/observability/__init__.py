from __future__ import annotations

import contextvars
import datetime as dt
import json
import logging
import os
import sys
import time
import uuid
from collections.abc import Generator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

SENSITIVE_KEYS = {"redis_url", "password", "token", "authorization", "api_key", "secret"}

# Structured fields copied from `extra={...}` onto the JSON line when present
_STANDARD_EXTRAS = (
    "event",
    "span_id",
    "parent_id",
    "duration_ms",
    "run_id",
    "owner_id",
    "task_id",
    "operation",
    "records",
    "groups",
    "attributes",
    "metadata",
)


def _iso_now() -> str:
    return dt.datetime.now(dt.UTC).isoformat()


def _redact(obj: Any) -> Any:
    if isinstance(obj, Mapping):
        redacted: dict[str, Any] = {}
        for k, v in obj.items():
            if isinstance(k, str) and k.lower() in SENSITIVE_KEYS:
                redacted[k] = "[REDACTED]"
            else:
                redacted[k] = _redact(v)
        return redacted
    if isinstance(obj, list | tuple):
        return [_redact(v) for v in obj]
    return obj


def _build_base_payload(record: logging.LogRecord) -> dict[str, Any]:
    service = getattr(record, "service", None) or os.getenv("SERVICE_NAME") or "taskforest"
    return {
        "ts": _iso_now(),
        "level": record.levelname.lower(),
        "service": service,
        "logger": record.name,
        "msg": record.getMessage(),
    }


def _enrich_with_context(payload: dict[str, Any]) -> None:
    ctx = get_run_context() or {}
    for key in ("run_id", "owner_id"):
        value = ctx.get(key)
        if key not in payload and value is not None:
            payload[key] = value


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload = _build_base_payload(record)
        for attr in _STANDARD_EXTRAS:
            if hasattr(record, attr):
                payload[attr] = getattr(record, attr)
        span_name = getattr(record, "span_name", None)
        if span_name is not None:
            payload["name"] = span_name
        _enrich_with_context(payload)
        for key in ("attributes", "metadata"):
            if isinstance(payload.get(key), dict):
                payload[key] = _redact(payload[key])
        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            payload["err_type"] = getattr(exc_type, "__name__", str(exc_type))
            if exc_value is not None:
                payload["err"] = str(exc_value)
            payload["stack"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class ConsoleLogFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__("%(message)s")

    @staticmethod
    def _shorten(value: str | None, *, n: int = 8) -> str:
        if not value:
            return "-"
        return value[:n]

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        ts = _iso_now()[11:19]  # HH:MM:SS
        parts: list[str] = [ts, record.levelname.upper(), record.name]

        event = getattr(record, "event", None)
        if event:
            parts.append(str(event))
        ctx = get_run_context() or {}
        owner = getattr(record, "owner_id", None) or ctx.get("owner_id")
        if owner:
            parts.append(f"owner={self._shorten(str(owner))}")
        task_id = getattr(record, "task_id", None)
        if task_id:
            parts.append(f"task={self._shorten(str(task_id))}")
        records = getattr(record, "records", None)
        if records is not None:
            parts.append(f"records={records}")
        parts.append("-")
        parts.append(record.getMessage())
        return " ".join(parts)


def _choose_formatter() -> logging.Formatter:
    format_pref = (os.getenv("LOG_FORMAT") or "").strip().lower() or "auto"
    if format_pref == "auto":
        try:
            if sys.stdout.isatty():
                return ConsoleLogFormatter()
        except (AttributeError, ValueError):
            pass
        return JsonLogFormatter()
    if format_pref == "console":
        return ConsoleLogFormatter()
    return JsonLogFormatter()


def _parse_level(value: str | None, default: int = logging.INFO) -> int:
    name = (value or "").strip().upper()
    if not name:
        return default
    level = getattr(logging, name, None)
    return level if isinstance(level, int) else default


def _level_for_logger(logger_name: str) -> int:
    """Resolve a logger level from LOG_LEVEL and LOG_MODULE_LEVELS.

    LOG_MODULE_LEVELS is a comma separated list of ``prefix=LEVEL`` entries,
    e.g. ``taskforest.importer=DEBUG,taskforest.gateway=WARNING``.
    """
    base_level = _parse_level(os.getenv("LOG_LEVEL"), logging.INFO)
    overrides = (os.getenv("LOG_MODULE_LEVELS") or "").strip()
    if not overrides:
        return base_level
    for entry in overrides.split(","):
        entry = entry.strip()
        if not entry or "=" not in entry:
            continue
        prefix, lvl = entry.split("=", 1)
        prefix = prefix.strip()
        if not prefix:
            continue
        if logger_name == prefix or logger_name.startswith(prefix + "."):
            return _parse_level(lvl, base_level)
    return base_level


def get_json_logger(name: str = "taskforest") -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(stream=sys.stdout)
        handler.setFormatter(_choose_formatter())
        logger.addHandler(handler)
        logger.setLevel(_level_for_logger(name))
        logger.propagate = False
    return logger


def configure_uvicorn_logging() -> None:
    """Route uvicorn's loggers through our formatter and level rules."""
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        lg = logging.getLogger(name)
        for h in list(lg.handlers):
            lg.removeHandler(h)
            h.close()
        handler = logging.StreamHandler(stream=sys.stdout)
        handler.setFormatter(_choose_formatter())
        lg.addHandler(handler)
        lg.setLevel(_level_for_logger(name))
        lg.propagate = False


@dataclass
class Span:
    span_id: str
    name: str
    start_ns: int
    parent_id: str | None


class Tracer:
    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or get_json_logger("taskforest.trace")
        self._stack: list[Span] = []

    @contextmanager
    def span(
        self,
        name: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> Generator[Span, None, None]:
        span_id = str(uuid.uuid4())
        parent_id = self._stack[-1].span_id if self._stack else None
        span = Span(
            span_id=span_id,
            name=name,
            start_ns=time.perf_counter_ns(),
            parent_id=parent_id,
        )
        self._logger.info(
            "span start",
            extra={
                "event": "span_start",
                "span_name": name,
                "span_id": span_id,
                "parent_id": parent_id,
                "metadata": dict(metadata or {}),
            },
        )
        self._stack.append(span)
        try:
            yield span
        finally:
            duration_ms = (time.perf_counter_ns() - span.start_ns) / 1_000_000.0
            self._logger.info(
                "span end",
                extra={
                    "event": "span_end",
                    "span_name": name,
                    "span_id": span_id,
                    "parent_id": parent_id,
                    "duration_ms": duration_ms,
                },
            )
            if self._stack and self._stack[-1].span_id == span_id:
                self._stack.pop()


class Metrics:
    def __init__(self) -> None:
        self._counters: dict[tuple[str, tuple[tuple[str, str], ...]], int] = {}

    def increment(
        self,
        name: str,
        labels: Mapping[str, str] | None = None,
        amount: int = 1,
    ) -> None:
        label_items: tuple[tuple[str, str], ...] = tuple(sorted((labels or {}).items()))
        key = (name, label_items)
        self._counters[key] = self._counters.get(key, 0) + amount

    def value(self, name: str, labels: Mapping[str, str] | None = None) -> int:
        label_items = tuple(sorted((labels or {}).items()))
        return self._counters.get((name, label_items), 0)

    def snapshot(self) -> list[dict[str, Any]]:
        return [
            {"name": name, "labels": dict(label_items), "value": value}
            for (name, label_items), value in sorted(self._counters.items())
        ]


# ----------------------------
# Run context helpers
# ----------------------------

_run_context_var: contextvars.ContextVar[dict[str, Any] | None] = contextvars.ContextVar(
    "taskforest_run_context", default=None
)


def get_run_context() -> dict[str, Any] | None:
    return _run_context_var.get()


@contextmanager
def use_run_context(owner_id: str, run_id: str | None = None) -> Generator[str, None, None]:
    """Tag every log line emitted inside the block with the owner and a run id."""
    rid = run_id or str(uuid.uuid4())
    token = _run_context_var.set({"run_id": rid, "owner_id": owner_id})
    try:
        yield rid
    finally:
        _run_context_var.reset(token)


# ----------------------------
# Metrics singleton
# ----------------------------

_metrics_singleton: Metrics | None = None


def get_metrics() -> Metrics:
    global _metrics_singleton
    if _metrics_singleton is None:
        _metrics_singleton = Metrics()
    return _metrics_singleton


def reset_metrics() -> None:
    global _metrics_singleton
    _metrics_singleton = Metrics()


__all__ = [
    "ConsoleLogFormatter",
    "JsonLogFormatter",
    "Metrics",
    "Span",
    "Tracer",
    "configure_uvicorn_logging",
    "get_json_logger",
    "get_metrics",
    "get_run_context",
    "reset_metrics",
    "use_run_context",
]
