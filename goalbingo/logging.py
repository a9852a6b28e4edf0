"""Loguru configuration for Goal Bingo services.

Every log line can carry the caller context of the operation that produced
it: the acting user, the service operation, the board being changed and an
optional request id supplied by the host. Services tag the context through
``require_user`` and ``set_request_context``; background work such as the
outbox dispatcher scopes it with ``log_context`` so earlier values come back
afterwards.

Two renderings are available:
    - console: coloured single lines with a ``[user=... op=...]`` suffix
    - JSON: one object per line with the context fields at the top level

Example:
    >>> from goalbingo.logging import log_context, logger
    >>> with log_context(operation="outbox.drain"):
    ...     logger.info("Applied outbox entry", entry_id=7)
"""

import json
import sys
import traceback
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Any

from loguru import logger as loguru_logger

from goalbingo.config import Settings, settings

# =============================================================================
# Caller Context
# =============================================================================

CONTEXT_FIELDS = ("request_id", "user_id", "operation", "board_id")

# Short labels used in the console suffix
_LABELS = {"request_id": "req", "user_id": "user", "operation": "op", "board_id": "board"}

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(name, default=None) for name in CONTEXT_FIELDS
}

request_id_var = _context_vars["request_id"]
user_id_var = _context_vars["user_id"]
operation_var = _context_vars["operation"]
board_id_var = _context_vars["board_id"]


def set_request_context(
    request_id: str | None = None,
    user_id: str | None = None,
    operation: str | None = None,
    board_id: str | None = None,
) -> None:
    """Tag subsequent log lines of this context. ``None`` leaves a field as it is."""
    values = {"request_id": request_id, "user_id": user_id, "operation": operation, "board_id": board_id}
    for name, value in values.items():
        if value is not None:
            _context_vars[name].set(value)


def clear_request_context() -> None:
    for var in _context_vars.values():
        var.set(None)


def get_request_context() -> dict[str, str | None]:
    return {name: var.get() for name, var in _context_vars.items()}


@contextmanager
def log_context(**fields: str | None) -> Iterator[None]:
    """Set context fields for the duration of a block, then restore them.

    Raises:
        ValueError: Unknown context field
    """
    unknown = set(fields) - set(CONTEXT_FIELDS)
    if unknown:
        raise ValueError(f"Unknown log context fields: {sorted(unknown)}")

    tokens: list[tuple[ContextVar[str | None], Token[str | None]]] = [
        (_context_vars[name], _context_vars[name].set(value)) for name, value in fields.items()
    ]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


# =============================================================================
# Rendering
# =============================================================================


def serialize(record: dict[str, Any]) -> str:
    """Render a record as one JSON object.

    Context fields that are set and keyword arguments passed to the log call
    sit at the top level next to the message.
    """
    payload: dict[str, Any] = {
        "time": record["time"].isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "logger": record["name"],
        "location": f"{record['function']}:{record['line']}",
    }
    payload.update({name: value for name, value in get_request_context().items() if value})
    payload.update(record["extra"])

    if exc := record["exception"]:
        payload["exception"] = {
            "type": exc.type.__name__ if exc.type else None,
            "value": str(exc.value),
            "traceback": "".join(traceback.format_exception(exc.type, exc.value, exc.traceback)),
        }
    return json.dumps(payload, default=str)


def context_label() -> str:
    """Console suffix such as `` [user=u1 op=set_completed]`` (empty without context)."""
    parts = [f"{_LABELS[name]}={value}" for name, value in get_request_context().items() if value]
    return f" [{' '.join(parts)}]" if parts else ""


def patching(record: dict[str, Any]) -> None:
    """Attach the JSON rendering to the record in place."""
    record["serialized"] = serialize(record)


def _json_format(record: dict[str, Any]) -> str:
    return "{serialized}\n"


def _console_format(record: dict[str, Any]) -> str:
    # The suffix is baked into the template, so braces and tags must be escaped.
    suffix = context_label().replace("{", "{{").replace("}", "}}").replace("<", r"\<")
    return (
        "<green>{time:HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{line}</cyan> | "
        "<level>{message}</level>"
        f"<dim>{suffix}</dim>\n{{exception}}"
    )


# =============================================================================
# Sinks
# =============================================================================


def setup_logging(config: Settings = settings, sink: Any = sys.stdout) -> Any:
    """Replace all sinks according to the logging settings.

    The console (or ``sink``) gets JSON when ``config.log_json`` is set and
    readable lines otherwise, coloured when the sink is a terminal. With
    ``config.log_to_file`` a rotating JSON file is kept at
    ``<data_dir>/logs/goalbingo.log``.

    Returns:
        Logger patched to carry the JSON rendering
    """
    loguru_logger.remove()
    patched = loguru_logger.patch(patching)

    patched.add(
        sink,
        level=config.log_level,
        format=_json_format if config.log_json else _console_format,
    )

    if config.log_to_file:
        log_file = config.data_dir / "logs" / "goalbingo.log"
        log_file.parent.mkdir(parents=True, exist_ok=True)
        patched.add(
            log_file,
            level=config.log_level,
            format=_json_format,
            rotation="50 MB",
            retention="14 days",
            compression="zip",
            enqueue=True,
        )

    return patched


logger = setup_logging()


__all__ = [
    "CONTEXT_FIELDS",
    "logger",
    "request_id_var",
    "user_id_var",
    "operation_var",
    "board_id_var",
    "set_request_context",
    "clear_request_context",
    "get_request_context",
    "log_context",
    "context_label",
    "setup_logging",
]
