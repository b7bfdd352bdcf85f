"""Workflow services. Each module owns the writes of its entities."""
