"""
Upstream layer: credential cache and channel data sources
"""

from .base import ChannelSource
from .credentials import CredentialCache
from .mock import MockChannelSource
from .twitch import TwitchChannelSource

__all__ = ["ChannelSource", "CredentialCache", "MockChannelSource", "TwitchChannelSource"]
