"""
Core layer - domain model, ports and exceptions.

Nothing in here performs I/O; adapters implement the ports.
"""
