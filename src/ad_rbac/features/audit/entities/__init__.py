"""Audit entities and protocols."""

from .audit_event import AuditEvent, AuditSink

__all__ = ["AuditEvent", "AuditSink"]
