"""Outcome type returned by every lending operation.

Expected rejections (bad input, unknown ids, records already resolved) come
back as a failed ``ActionResult`` with a human-readable ``error``; only the
``action`` decorator turns unexpected exceptions into a generic failure.
"""

import functools
import logging
from dataclasses import dataclass, field

from models import db

logger = logging.getLogger(__name__)

VALIDATION = "validation"
NOT_FOUND = "not_found"
CONFLICT = "conflict"
ERROR = "error"


@dataclass
class ActionResult:
    success: bool
    message: str = ""
    error: str = ""
    kind: str = ""
    status: str = None
    data: dict = field(default_factory=dict)

    @classmethod
    def ok(cls, message="", **data):
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, error, kind=VALIDATION, status=None, **data):
        return cls(success=False, error=error, kind=kind, status=status, data=data)

    @classmethod
    def not_found(cls, what):
        return cls.fail(f"{what} not found", kind=NOT_FOUND)

    @classmethod
    def conflict(cls, error, status):
        return cls.fail(error, kind=CONFLICT, status=status)

    def to_dict(self):
        out = {"success": self.success}
        if self.success:
            out["message"] = self.message
        else:
            out["error"] = self.error
            out["kind"] = self.kind
            if self.status is not None:
                out["status"] = self.status
        out.update(self.data)
        return out


def action(error_message):
    """Catch anything unexpected, roll back and report ``error_message``."""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception:
                db.session.rollback()
                logger.exception("%s (%s)", error_message, func.__name__)
                return ActionResult.fail(error_message, kind=ERROR)

        return wrapper

    return decorator
