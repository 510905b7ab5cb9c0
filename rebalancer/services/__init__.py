from .snapshot import HoldingsSnapshot, HoldingsSnapshotBuilder, Position

__all__ = [
    "HoldingsSnapshot",
    "HoldingsSnapshotBuilder",
    "Position",
]
