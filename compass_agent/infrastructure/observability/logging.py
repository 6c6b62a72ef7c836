"""
Structured logging and in-process metrics.

Every log line is a structlog event with service context merged from
contextvars. Customer contact details never reach the log output: the
``redact_contact_details`` processor masks them wherever they appear.
"""

import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog


REDACTED = "***"

# Keys whose values identify a customer directly
SENSITIVE_KEYS = frozenset({"email", "phone", "id_number", "password", "api_key", "authorization"})


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "compass-agent",
    environment: str = "development",
    version: str = "unknown"
) -> None:
    """Route structlog through stdlib logging and bind the service identity"""

    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    renderer = structlog.dev.ConsoleRenderer() if log_format == "console" else structlog.processors.JSONRenderer(default=str)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_service_context,
            redact_contact_details,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(service=service_name, environment=environment, version=version)


def add_service_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Fill in the timestamp and the request's trace and session ids"""

    event_dict.setdefault("timestamp", datetime.now(timezone.utc).isoformat())

    bound = structlog.contextvars.get_contextvars()
    for key in ("trace_id", "session_id"):
        if bound.get(key) and key not in event_dict:
            event_dict[key] = bound[key]

    return event_dict


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: REDACTED if k in SENSITIVE_KEYS and v else _redact(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_redact(item) for item in value]
    return value


def redact_contact_details(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    return _redact(event_dict)


def summarize_output(data: Any) -> Dict[str, Any]:
    """Shape of a tool result, without the records themselves"""

    if data is None:
        return {"kind": "none"}
    if isinstance(data, list):
        return {"kind": "list", "count": len(data)}
    if isinstance(data, dict):
        return {"kind": "object", "keys": sorted(data)[:10]}
    return {"kind": type(data).__name__}


class AgentLogger:
    """Turn-level events: tool calls, stage transitions, context assembly"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_tool_execution(
        self,
        tool_name: str,
        session_id: Optional[str],
        input_data: Dict[str, Any],
        output_data: Optional[Dict[str, Any]] = None,
        duration_ms: Optional[float] = None,
        success: bool = True,
        error: Optional[str] = None,
        timed_out: bool = False
    ):
        # Failed and timed-out tools are warnings; the turn carries on without them
        emit = self.logger.info if success and not timed_out else self.logger.warning
        emit(
            "tool_execution",
            tool_name=tool_name,
            session_id=session_id,
            params=input_data,
            output=output_data,
            duration_ms=round(duration_ms, 2) if duration_ms is not None else None,
            success=success,
            timed_out=timed_out,
            error=error
        )

    def log_turn_transition(self, session_id: Optional[str], from_state: str, to_state: str):
        self.logger.info("turn_transition", session_id=session_id, from_state=from_state, to_state=to_state)

    def log_context_update(
        self,
        session_id: Optional[str],
        context_type: str,
        action: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.logger.info(
            "context_update",
            session_id=session_id,
            context_type=context_type,
            action=action,
            **(details or {})
        )


agent_logger = AgentLogger("compass_agent")


@dataclass
class LatencyStats:
    count: int = 0
    total_ms: float = 0.0
    min_ms: Optional[float] = None
    max_ms: float = 0.0

    def observe(self, duration_ms: float) -> None:
        self.count += 1
        self.total_ms += duration_ms
        self.min_ms = duration_ms if self.min_ms is None else min(self.min_ms, duration_ms)
        self.max_ms = max(self.max_ms, duration_ms)

    def summary(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "avg": round(self.total_ms / self.count, 2) if self.count else 0.0,
            "min": round(self.min_ms or 0.0, 2),
            "max": round(self.max_ms, 2),
        }


class MetricsCollector:
    """Latency and counter metrics kept in memory and echoed as debug events"""

    def __init__(self):
        self.latencies: Dict[str, LatencyStats] = {}
        self.counters: Dict[str, int] = {}

    def record_latency(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        self.latencies.setdefault(operation, LatencyStats()).observe(duration_ms)
        agent_logger.logger.debug("metric", kind="latency", operation=operation, duration_ms=duration_ms, tags=tags or {})

    def increment_counter(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None):
        self.counters[name] = self.counters.get(name, 0) + value
        agent_logger.logger.debug("metric", kind="counter", name=name, value=value, tags=tags or {})

    def get_metrics_summary(self) -> Dict[str, Any]:
        summary: Dict[str, Any] = {f"latency.{op}": stats.summary() for op, stats in self.latencies.items()}
        summary.update(self.counters)
        return summary


metrics = MetricsCollector()
