"""Groups, roles and permissions."""
