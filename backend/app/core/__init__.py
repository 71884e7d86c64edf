"""Core configuration, logging, metrics and middleware."""
