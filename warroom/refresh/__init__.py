"""
Refresh layer: throttled, lock-protected snapshot publication
"""

from .coordinator import RefreshCoordinator, RefreshPhase

__all__ = ["RefreshCoordinator", "RefreshPhase"]
