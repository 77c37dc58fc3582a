"""Small helper utilities shared across the application."""
