"""Authentication: bearer token validation and role checks."""
