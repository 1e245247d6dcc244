"""Branch-level synchronization engine and scheduler for paired git remotes."""

__version__ = "0.4.0"
