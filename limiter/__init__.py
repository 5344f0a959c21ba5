"""Ratewarden: distributed rate limiting service and adaptive client."""
