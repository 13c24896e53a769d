"""
Shared Kernel

Base domain classes, value objects, the error taxonomy, the message bus
and unit of work, and infrastructure helpers used by every app.
"""
