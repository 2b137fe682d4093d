"""
Version management for the site updater.

This module implements:
- Semantic versioning validation and comparison
- The version record persisted at the application root
- VersionManager with load-on-demand and atomic save-on-mutation

The version record keeps the external JSON layout:

    {"version": "1.2.0", "last_update": "2024-05-01T10:00:00+00:00",
     "logs": {...last log entry...}, "recovery_path": "/srv/app/storage/..."}

Nothing is cached across operations: every read goes back to disk.
"""

from __future__ import annotations

import json
import os
import re
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from site_updater.errors import FailedPreconditionError, InvalidArgumentError
from site_updater.logging import get_logger

logger = get_logger(__name__)

DEFAULT_VERSION = "1.0.0"

# Semantic versioning regex pattern
# Accepts: 1.0.0, 1.2.3, 2.0.0-beta.1, 1.0.0-alpha+build.123
SEMVER_PATTERN = re.compile(
    r"^(?P<major>0|[1-9]\d*)"
    r"\.(?P<minor>0|[1-9]\d*)"
    r"\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<prerelease>(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"
    r"(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+(?P<buildmetadata>[0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)


def parse_semantic_version(version: str) -> dict[str, Any]:
    """
    Parse and validate a semantic version string.

    Args:
        version: Version string (e.g., "1.0.0", "1.2.3-beta.1").

    Returns:
        Dictionary with major, minor, patch, prerelease and buildmetadata.

    Raises:
        InvalidArgumentError: If version string is invalid.
    """
    if not version:
        raise InvalidArgumentError(
            "Version string cannot be empty",
            details={"version": version},
        )

    match = SEMVER_PATTERN.match(version)
    if not match:
        raise InvalidArgumentError(
            f"Invalid semantic version: {version}",
            details={
                "version": version,
                "format": "MAJOR.MINOR.PATCH[-PRERELEASE][+BUILDMETADATA]",
            },
        )

    return {
        "major": int(match.group("major")),
        "minor": int(match.group("minor")),
        "patch": int(match.group("patch")),
        "prerelease": match.group("prerelease"),
        "buildmetadata": match.group("buildmetadata"),
    }


def _compare_prerelease(pre1: str, pre2: str) -> int:
    """Compare dot-separated prerelease identifiers per semver precedence."""
    parts1 = pre1.split(".")
    parts2 = pre2.split(".")
    for a, b in zip(parts1, parts2, strict=False):
        if a == b:
            continue
        a_num, b_num = a.isdigit(), b.isdigit()
        if a_num and b_num:
            return -1 if int(a) < int(b) else 1
        if a_num != b_num:
            # Numeric identifiers sort before alphanumeric ones
            return -1 if a_num else 1
        return -1 if a < b else 1
    if len(parts1) == len(parts2):
        return 0
    return -1 if len(parts1) < len(parts2) else 1


def compare_versions(v1: str, v2: str) -> int:
    """
    Compare two semantic versions.

    Returns:
        -1 if v1 < v2, 0 if v1 == v2, 1 if v1 > v2

    Raises:
        InvalidArgumentError: If either version is invalid.
    """
    p1 = parse_semantic_version(v1)
    p2 = parse_semantic_version(v2)

    for key in ("major", "minor", "patch"):
        if p1[key] < p2[key]:
            return -1
        elif p1[key] > p2[key]:
            return 1

    # No prerelease ranks above any prerelease of the same core version
    pre1 = p1["prerelease"]
    pre2 = p2["prerelease"]
    if pre1 is None and pre2 is not None:
        return 1
    if pre1 is not None and pre2 is None:
        return -1
    if pre1 is not None and pre2 is not None:
        return _compare_prerelease(pre1, pre2)
    return 0


def is_newer(candidate: str, current: str) -> bool:
    """Whether `candidate` is strictly newer than `current`."""
    return compare_versions(candidate, current) > 0


# =============================================================================
# Version Record Model
# =============================================================================


class VersionRecord(BaseModel):
    """
    Metadata record persisted at the application root.

    Attributes:
        version: Currently installed version.
        last_update: ISO 8601 timestamp of the last successful update.
        last_update_log: Last log entry recorded by an update.
        recovery_pointer: Path of the current recovery container, if any.
    """

    model_config = ConfigDict(populate_by_name=True)

    version: str = Field(default=DEFAULT_VERSION, description="Installed version")
    last_update: str | None = Field(
        default=None,
        description="ISO 8601 timestamp of the last update",
    )
    last_update_log: dict[str, Any] | None = Field(
        default=None,
        alias="logs",
        description="Last log entry recorded by an update",
    )
    recovery_pointer: str | None = Field(
        default=None,
        alias="recovery_path",
        description="Path of the current recovery container",
    )

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate the version is a valid semantic version."""
        parse_semantic_version(v)
        return v

    @field_validator("last_update_log", "recovery_pointer", mode="before")
    @classmethod
    def empty_as_none(cls, v: Any) -> Any:
        """Older records store empty strings or lists for unset fields."""
        if v in ("", [], {}):
            return None
        return v


# =============================================================================
# Version Manager
# =============================================================================


class VersionManager:
    """
    Reads and writes the version record.

    Every accessor loads the record from disk; every mutator writes it back
    atomically (temp file, fsync, rename). A missing record is created with
    the default version on first access.

    Attributes:
        version_file: Path of the JSON record.
        default_version: Version written when the record is first created.
    """

    def __init__(
        self,
        version_file: Path | str,
        default_version: str = DEFAULT_VERSION,
    ) -> None:
        self.version_file = Path(version_file)
        self.default_version = default_version

    def load(self) -> VersionRecord:
        """
        Load the record, creating it with the default version if absent.

        Raises:
            FailedPreconditionError: If the record exists but cannot be parsed.
        """
        if not self.version_file.exists():
            record = VersionRecord(version=self.default_version)
            self.save(record)
            logger.info(
                "Created version record",
                extra={"path": str(self.version_file), "version": record.version},
            )
            return record

        try:
            with open(self.version_file, encoding="utf-8") as f:
                data = json.load(f)
            record = VersionRecord.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError, InvalidArgumentError) as e:
            raise FailedPreconditionError(
                f"Corrupted version record: {self.version_file}",
                details={"path": str(self.version_file), "error": str(e)},
            ) from e

        logger.debug(
            "Loaded version record",
            extra={"path": str(self.version_file), "version": record.version},
        )
        return record

    def save(self, record: VersionRecord) -> None:
        """
        Save the record with an atomic write.

        Args:
            record: Record to persist.
        """
        path = self.version_file
        path.parent.mkdir(parents=True, exist_ok=True)

        data = record.model_dump(by_alias=True)
        temp_path = path.with_suffix(path.suffix + ".tmp")

        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())

        os.replace(temp_path, path)
        logger.debug("Saved version record", extra={"path": str(path)})

    def get_current_version(self) -> str:
        """Return the installed version."""
        return self.load().version

    def set_current_version(self, version: str) -> VersionRecord:
        """
        Record a newly installed version and stamp the update time.

        Raises:
            InvalidArgumentError: If the version is not a valid semantic version.
        """
        parse_semantic_version(version)
        record = self.load()
        record.version = version
        record.last_update = datetime.now(UTC).isoformat()
        self.save(record)
        logger.info("Version updated", extra={"version": version})
        return record

    def add_update_log(self, entry: dict[str, Any] | None) -> None:
        """Store the last log entry of an update."""
        record = self.load()
        record.last_update_log = entry
        self.save(record)

    def set_recovery_path(self, path: Path | str | None) -> None:
        """Point the record at the current recovery container."""
        record = self.load()
        record.recovery_pointer = str(path) if path is not None else None
        self.save(record)

    def get_recovery_path(self) -> Path | None:
        """Return the recorded recovery container path, if any."""
        pointer = self.load().recovery_pointer
        return Path(pointer) if pointer else None
