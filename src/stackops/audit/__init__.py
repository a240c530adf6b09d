"""Append-only audit log shared by the deploy and backup runs."""

from stackops.audit.log import AuditLog

__all__ = ["AuditLog"]
