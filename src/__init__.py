# src/__init__.py — v1
"""quotabar — usage poller core for AI coding plans."""

from quotabar.version import __version__

__all__ = ["__version__"]
