"""Monitoring: logging setup and provider health tracking."""
