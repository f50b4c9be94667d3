"""Audit trail and logging package."""

from expense_tracker.audit.logger import AuditLogger
from expense_tracker.audit.trail import AuditTrailEngine, ForbiddenError, compute_changes

__all__ = ["AuditLogger", "AuditTrailEngine", "ForbiddenError", "compute_changes"]
