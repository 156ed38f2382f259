"""Groq-backed translator."""
