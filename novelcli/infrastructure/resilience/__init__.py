"""Resilience Implementations.

Contains the bounded-concurrency semaphore, the retry executor with
exponential backoff, and the health-aware provider call service.
Bounded Context: Pipeline Resilience
"""
