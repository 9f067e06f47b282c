"""Shared API dependencies — single import point for all routers.

Re-exports database session, authentication and plan gating dependencies so
that router modules can import everything they need from one place::

    from taskmaster.api.deps import get_db, get_current_user
"""

from taskmaster.auth.dependencies import (
    get_current_admin,
    get_current_user,
    verify_job_caller,
)
from taskmaster.billing.dependencies import get_entitlements, require_feature
from taskmaster.database import get_db

__all__ = [
    "get_db",
    "get_current_user",
    "get_current_admin",
    "verify_job_caller",
    "get_entitlements",
    "require_feature",
]
