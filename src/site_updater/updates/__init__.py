"""
Transactional update pipeline for the site updater.

This package implements:
- Capability interfaces and their local implementations
- Exclusion rules shared by snapshot and install
- Version record management
- Database snapshots (basic and portable dumps)
- Snapshot capture, installation and recovery
- The update state machine
"""

from site_updater.updates.capabilities import (
    Archiver,
    Database,
    FileSystem,
    HttpFetcher,
    ProcessResult,
    ProcessRunner,
)
from site_updater.updates.database import DatabaseSnapshotter, SqlAlchemyDatabase
from site_updater.updates.dependencies import DependencySwapper
from site_updater.updates.exclusions import ExclusionSet
from site_updater.updates.fetcher import ArchiveFetcher, HttpxFetcher, UpdateCheck
from site_updater.updates.hooks import HookRunner
from site_updater.updates.installer import Installer
from site_updater.updates.maintenance import MaintenanceWindow, get_maintenance_window
from site_updater.updates.manifest import UpdateManifest
from site_updater.updates.operations import LocalFileSystem
from site_updater.updates.packages import PackageInstaller
from site_updater.updates.process import SubprocessRunner
from site_updater.updates.recovery import RecoveryManager
from site_updater.updates.snapshot import Snapshot, SnapshotManager
from site_updater.updates.state_machine import UpdateOrchestrator, UpdateResult, UpdateState
from site_updater.updates.version import (
    VersionManager,
    VersionRecord,
    compare_versions,
    parse_semantic_version,
)

__all__ = [
    # Capabilities
    "Archiver",
    "Database",
    "FileSystem",
    "HttpFetcher",
    "ProcessRunner",
    "ProcessResult",
    "LocalFileSystem",
    "SubprocessRunner",
    "HttpxFetcher",
    "SqlAlchemyDatabase",
    # Pipeline
    "ArchiveFetcher",
    "UpdateCheck",
    "ExclusionSet",
    "UpdateManifest",
    "DatabaseSnapshotter",
    "Snapshot",
    "SnapshotManager",
    "DependencySwapper",
    "HookRunner",
    "Installer",
    "PackageInstaller",
    "RecoveryManager",
    "MaintenanceWindow",
    "get_maintenance_window",
    # State machine
    "UpdateOrchestrator",
    "UpdateResult",
    "UpdateState",
    # Version management
    "VersionManager",
    "VersionRecord",
    "compare_versions",
    "parse_semantic_version",
]
