"""livetail package."""

__all__ = [
    "config",
    "source",
    "splitter",
    "follower",
    "history",
    "hub",
    "gate",
]
