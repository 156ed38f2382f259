"""Domain Layer: error kinds, value objects, events and the interfaces (ports)
the core services depend on. Has no dependency on infrastructure code.
"""
