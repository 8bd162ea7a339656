"""Audit logging for trigger operations."""

from trigger_engine.audit.logger import AuditLogger, AuditSink

__all__ = ["AuditLogger", "AuditSink"]
