"""Audit sinks."""

from .logging_sink import LoggingAuditSink
from .memory_sink import MemoryAuditSink

__all__ = ["LoggingAuditSink", "MemoryAuditSink"]
