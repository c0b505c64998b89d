"""patchwork: batch security findings into prioritized remote agent sessions."""

__version__ = "0.1.0"
