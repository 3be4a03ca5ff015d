"""Pydantic models shared across the database layer."""
