"""
Structured logging for the governance engine.

Every log line carries a correlation id, so a single vote can be traced from
the CLI call through the ledger write to the audit event it produced. Member
identities never reach the log sink in clear text.
"""

import contextvars
import logging
import os
import secrets
import sys
import time
from typing import Any

import structlog

from governance_engine.kernel.errors import (
    AuthorizationError,
    ConflictError,
    StateError,
    ValidationError,
)
from governance_engine.kernel.settings import EngineSettings

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)

# Refusals a caller can provoke; logged as outcomes, not faults
EXPECTED_ERRORS = (AuthorizationError, ConflictError, StateError, ValidationError)

# Member identities are personal data; metadata may carry free-form text
REDACTED_FIELDS = frozenset(
    {"actor_id", "voter_id", "proposer_id", "metadata", "token", "secret"}
)
REDACTED = "***REDACTED***"


def get_correlation_id() -> str:
    """Correlation id of the current context, minted on first use."""
    cid = correlation_id_var.get()
    if not cid:
        cid = secrets.token_urlsafe(16)
        correlation_id_var.set(cid)
    return cid


def set_correlation_id(correlation_id: str) -> None:
    correlation_id_var.set(correlation_id)


def _stamp_correlation_id(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    event_dict["correlation_id"] = get_correlation_id()
    return event_dict


def is_production() -> bool:
    """True when GOVERNANCE_ENVIRONMENT (or ENVIRONMENT) is 'production'."""
    environment = os.getenv("GOVERNANCE_ENVIRONMENT") or os.getenv("ENVIRONMENT", "development")
    return environment.lower() == "production"


def configure_logging(
    settings: EngineSettings | None = None,
    *,
    json_output: bool | None = None,
    log_level: str | None = None,
) -> None:
    """
    Route stdlib logging and structlog to stderr.

    Level and renderer come from `settings` (log_level, json_logs) unless the
    keyword arguments say otherwise. Production environments always get JSON.

    Args:
        settings: Engine settings to read defaults from
        json_output: Force JSON (True) or console (False) rendering
        log_level: Level name such as "INFO" or "WARNING"
    """
    settings = settings or EngineSettings()
    if json_output is None:
        json_output = settings.json_logs or is_production()
    level_name = (log_level or settings.log_level).upper()

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=getattr(logging, level_name))
    # Flask's request log is noise next to the health probes
    logging.getLogger("werkzeug").setLevel(logging.WARNING)

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        _stamp_correlation_id,
    ]
    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors += [
            structlog.processors.ExceptionRenderer(),
            structlog.dev.ConsoleRenderer(colors=False),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def redact_context(context: dict[str, Any]) -> dict[str, Any]:
    """
    Mask member identities and free-form payloads before logging.

    Example:
        >>> redact_context({"voter_id": "alice", "proposal_id": "prop-1"})
        {'voter_id': '***REDACTED***', 'proposal_id': 'prop-1'}
    """
    return {key: REDACTED if key in REDACTED_FIELDS else value for key, value in context.items()}


class LogOperation:
    """
    Time one governance operation and log how it ended.

    A clean exit logs "<op> completed" at info. A refusal from EXPECTED_ERRORS
    logs "<op> rejected" at info with the error type and reason. Anything else
    logs "<op> failed" at error. The exception always propagates.

    Example:
        with LogOperation(logger, "cast_vote", proposal_id=pid, voter_id=voter):
            ledger.record(...)
    """

    def __init__(self, logger: structlog.stdlib.BoundLogger, operation: str, **context: Any):
        self.logger = logger
        self.operation = operation
        self.context = redact_context(context)
        self._started = 0.0

    def __enter__(self) -> "LogOperation":
        self._started = time.perf_counter()
        self.logger.debug(f"{self.operation} started", operation=self.operation, **self.context)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        fields = dict(
            self.context,
            operation=self.operation,
            duration_ms=round((time.perf_counter() - self._started) * 1000, 2),
        )
        if exc_type is None:
            self.logger.info(f"{self.operation} completed", **fields)
        elif issubclass(exc_type, EXPECTED_ERRORS):
            self.logger.info(
                f"{self.operation} rejected",
                error_type=exc_type.__name__,
                reason=str(exc_val),
                **fields,
            )
        else:
            self.logger.error(f"{self.operation} failed", exc_info=not is_production(), **fields)
