"""
Site Updater - transactional in-place upgrades for a deployed application.

This package fetches a versioned update artifact, snapshots everything the
artifact will touch (files and database), installs it, and restores the
snapshot automatically when installation fails.
"""

__version__ = "0.1.0"
