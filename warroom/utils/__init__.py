"""
Shared utilities: logging and backoff
"""
