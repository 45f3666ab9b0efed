"""Content store: access control for stored user files."""
