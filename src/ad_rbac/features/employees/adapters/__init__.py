"""Employee adapters."""

from .http_employee_source import HttpEmployeeSource

__all__ = ["HttpEmployeeSource"]
