"""Audit trail of committed mutations."""
