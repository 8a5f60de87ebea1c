"""Shared helpers: logging, hashing, timestamps, titles."""
