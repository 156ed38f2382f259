"""Caching Service Implementation.

Provides the namespaced in-memory TTL cache used in front of scraping,
translation and other remote calls.
Bounded Context: Cache Management
"""
