"""Employees, HR sync and login."""
