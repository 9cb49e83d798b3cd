import structlog
import logging
import sys
from typing import Dict, Any, Optional
from datetime import datetime
import os


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "scriptkill-server"
) -> None:
    """Setup structured logging configuration"""

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_service_context,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
        version=os.getenv("SERVICE_VERSION", "unknown")
    )


def add_service_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add session and trace identifiers to all log entries"""

    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.utcnow().isoformat()

    bound = structlog.contextvars.get_contextvars()

    trace_id = bound.get("trace_id")
    if trace_id:
        event_dict["trace_id"] = trace_id

    # Explicit session_id on the event wins over the bound one
    session_id = bound.get("session_id")
    if session_id and "session_id" not in event_dict:
        event_dict["session_id"] = session_id

    return event_dict


def bind_session(session_id: Optional[str]) -> None:
    """Bind the session being worked on to the current task's log context"""

    if session_id:
        structlog.contextvars.bind_contextvars(session_id=session_id)


class AgentLogger:
    """Specialized logger for session engine events"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_agent_event(
        self,
        event_type: str,
        agent_name: str,
        agent_role: str,
        data: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        """Log a participant agent invocation"""

        self.logger.info(
            "agent_event",
            event_type=event_type,
            agent_name=agent_name,
            agent_role=agent_role,
            data=data or {},
            **kwargs
        )

    def log_workflow_transition(
        self,
        session_id: Optional[str],
        step: str,
        succeeded: bool,
        error: Optional[str] = None
    ):
        """Log a finished workflow step"""

        self.logger.info(
            "workflow_transition",
            session_id=session_id,
            step=step,
            succeeded=succeeded,
            error=error
        )

    def log_phase_transition(
        self,
        session_id: str,
        from_phase: str,
        to_phase: str,
        round_number: int,
        generation: int
    ):
        """Log a discussion phase change"""

        self.logger.info(
            "phase_transition",
            session_id=session_id,
            from_phase=from_phase,
            to_phase=to_phase,
            round=round_number,
            generation=generation
        )

    def log_memory_update(
        self,
        collection: str,
        action: str,
        count: int,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log writes against the vector store"""

        self.logger.info(
            "memory_update",
            collection=collection,
            action=action,
            count=count,
            details=details or {}
        )


agent_logger = AgentLogger("scriptkill")


class MetricsCollector:
    """In-process agent latency and failure counts, mirrored to the log stream"""

    def __init__(self):
        self.latencies: Dict[str, Dict[str, float]] = {}
        self.counters: Dict[str, int] = {}

    def record_latency(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        stats = self.latencies.setdefault(
            operation, {"count": 0, "total_ms": 0.0, "min": duration_ms, "max": duration_ms}
        )
        stats["count"] += 1
        stats["total_ms"] += duration_ms
        stats["min"] = min(stats["min"], duration_ms)
        stats["max"] = max(stats["max"], duration_ms)

        agent_logger.logger.debug("metric", metric_type="latency", operation=operation,
                                  duration_ms=round(duration_ms, 1), tags=tags or {})

    def increment_counter(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None):
        self.counters[name] = self.counters.get(name, 0) + value
        agent_logger.logger.debug("metric", metric_type="counter", name=name, value=value, tags=tags or {})

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Latency stats keyed ``latency.<operation>`` plus the raw counters"""

        summary: Dict[str, Any] = {
            f"latency.{operation}": {
                "count": stats["count"],
                "avg": stats["total_ms"] / stats["count"],
                "min": stats["min"],
                "max": stats["max"],
            }
            for operation, stats in self.latencies.items()
        }
        summary.update(self.counters)
        return summary


metrics = MetricsCollector()
