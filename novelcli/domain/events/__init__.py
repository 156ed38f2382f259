"""Domain Event definitions.

Records significant occurrences in the pipeline (provider calls, retries,
fallbacks, breaker transitions, concurrency changes). Events are dispatched to
the debug log.
"""
