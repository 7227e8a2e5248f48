"""Request schemas for the readiness API."""
