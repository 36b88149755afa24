"""
Integration tests for the war-room HTTP service.

The app runs in-process over httpx's ASGI transport with the in-memory
store; the upstream is a fake or the deterministic mock source.
"""
