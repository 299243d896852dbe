"""Shared helpers: logging and async coordination."""
