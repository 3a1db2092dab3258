"""Pydantic models shared across the data, feature and service layers."""
