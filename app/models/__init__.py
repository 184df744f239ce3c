"""SQLModel table definitions."""
