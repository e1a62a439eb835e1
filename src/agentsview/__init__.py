"""
agentsview - self-update subsystem.

This package decides whether a newer agentsview release exists, downloads
and verifies the release archive, and replaces the running binary in place
with backup-and-restore on failure.
"""

__version__ = "0.1.0"
