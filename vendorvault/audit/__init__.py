"""Append-only credential audit log."""

from vendorvault.audit.logger import AuditLogEntry, query_log, record_event

__all__ = ["AuditLogEntry", "query_log", "record_event"]
