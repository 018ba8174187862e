"""Assignment lifecycle, history and reporting."""
