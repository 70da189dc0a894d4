import functools
import logging
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from esusu.core.errors import ServiceError, Conflict

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Something went wrong. Please try again."


def _session_from(args, kwargs) -> Session:
    db = kwargs.get("db")
    if db is None and args and isinstance(args[0], Session):
        db = args[0]
    return db


def failure_result(message: str = GENERIC_ERROR, kind: str = "Unexpected", code: str = "Unexpected", **context) -> dict:
    return {"success": False, "error": message, "kind": kind, "code": code, **context}


def action(func: Callable) -> Callable:
    """Run a mutating operation and return a discriminated result.

    The wrapped function receives the session first and returns a payload
    dict. Business failures come back as ``{"success": False, ...}``; a
    uniqueness violation that slipped past the checks becomes a Conflict;
    anything else is logged and reported with a generic message. The session
    is rolled back on every failure path.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> dict:
        db = _session_from(args, kwargs)
        try:
            payload = func(*args, **kwargs)
        except ServiceError as e:
            if db is not None:
                db.rollback()
            logger.info("%s rejected: %s (%s)", func.__name__, e.message, e.code)
            return e.to_result()
        except IntegrityError:
            if db is not None:
                db.rollback()
            logger.warning("%s hit a uniqueness constraint", func.__name__, exc_info=True)
            return Conflict().to_result()
        except Exception:
            if db is not None:
                db.rollback()
            logger.exception("Error in %s", func.__name__)
            return failure_result()

        return {"success": True, **(payload or {})}

    return wrapper


def read_action(default_factory: Callable):
    """Degrade a read operation to ``default_factory()`` on any fault."""
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception:
                db = _session_from(args, kwargs)
                if db is not None:
                    db.rollback()
                logger.exception("Error in %s", func.__name__)
                return default_factory()

        return wrapper

    return decorator
