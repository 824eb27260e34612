"""Service layer for the queue engine."""
