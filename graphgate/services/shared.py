"""
Shared helpers for graph services: result envelopes and the tool error boundary.
"""

from __future__ import annotations

from functools import wraps
from typing import Any, Callable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

import graphgate.config as config
from graphgate.errors import (
    ConflictError,
    GraphGateError,
    StorageError,
    ValidationIssue,
)

logger = config.logger


def ok(data: Any = None) -> dict:
    return {"success": True, "data": data}


def error_payload(tool_name: str, exc: GraphGateError) -> dict:
    error = {
        "type": exc.kind,
        "tool": tool_name,
        "message": str(exc),
    }
    if isinstance(exc, ValidationIssue):
        error["field"] = exc.field
    names = getattr(exc, "names", None)
    if names:
        error["names"] = list(names)
    retry_after = getattr(exc, "retry_after_seconds", None)
    if retry_after is not None:
        error["retry_after_seconds"] = retry_after
    return {"success": False, "error": error}


def _log_validation_issue(tool_name: str, exc: ValidationIssue, warn: bool = False) -> None:
    payload = {
        "tool": tool_name,
        "field": exc.field,
        "error_type": exc.error_type,
        "detail": str(exc),
    }
    if warn:
        logger.warning("tool_validation_error", extra=payload)
    else:
        logger.info("tool_validation_error", extra=payload)


def _tool_error_handler(fn: Callable[..., dict]) -> Callable[..., dict]:
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except ValidationIssue as exc:
            _log_validation_issue(fn.__name__, exc, warn=False)
            return error_payload(fn.__name__, exc)
        except GraphGateError as exc:
            logger.info(
                "tool_error",
                extra={"tool": fn.__name__, "error_type": exc.kind, "detail": str(exc)},
            )
            return error_payload(fn.__name__, exc)
        except IntegrityError as exc:
            logger.warning(
                "tool_integrity_error",
                extra={"tool": fn.__name__, "error_type": type(exc).__name__},
            )
            return error_payload(fn.__name__, ConflictError("write rejected by a uniqueness constraint"))
        except SQLAlchemyError as exc:
            logger.error(
                "tool_storage_error",
                extra={"tool": fn.__name__, "error_type": type(exc).__name__, "detail": str(exc)},
            )
            return error_payload(fn.__name__, StorageError("graph store unavailable"))
        except ValueError as exc:
            issue = ValidationIssue(str(exc), field="unknown", error_type="value_error")
            _log_validation_issue(fn.__name__, issue, warn=True)
            return error_payload(fn.__name__, issue)
    return wrapper


def service_tool(fn: Callable[..., dict]) -> Callable[..., dict]:
    return _tool_error_handler(fn)


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so the query is matched as a literal substring."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
