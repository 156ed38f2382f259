"""Infrastructure Layer: Contains concrete implementations and adapters.

Connects the application to the outside world (Syosetu pages, AI provider
APIs, the file system, the console) by implementing the interfaces defined in
the domain layer. Also includes caching, resilience and monitoring services.
"""
