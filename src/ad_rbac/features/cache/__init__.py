"""Resolved-permission cache."""
