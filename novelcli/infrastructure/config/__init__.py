"""Configuration loading and typed per-component settings."""
