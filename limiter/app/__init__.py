"""Rate limiting service application."""
