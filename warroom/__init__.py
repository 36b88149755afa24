"""
War-room snapshot service
Keeps one refreshed snapshot of a Twitch channel and streams changes to viewers
"""

__version__ = "0.1.0"
