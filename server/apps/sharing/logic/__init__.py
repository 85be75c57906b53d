"""Business logic layer for sharing app."""
