"""Persistence: engine, sessions and the declarative base."""
