"""
Update manifest model.

A manifest describes one update unit. It is read either from the manifest
file shipped inside an artifact (update.json) or from the remote update
check response, and is immutable once parsed:

    {"version": "1.2.0", "archive": "v1.2.0.zip",
     "vendor_update": false, "description": "Bug fixes"}
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from site_updater.errors import InvalidArgumentError
from site_updater.updates.version import parse_semantic_version


class UpdateManifest(BaseModel):
    """
    Description of a single update.

    Attributes:
        version: Semantic version delivered by the update.
        archive_ref: Remote filename or identifier of the artifact.
        dependency_update: Whether the artifact replaces the dependency directory.
        description: Free-form release notes.
        script_name: Hook script name overriding the configured default.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    version: str = Field(..., description="Semantic version of the update")
    archive_ref: str = Field(
        default="",
        alias="archive",
        description="Remote filename or identifier of the artifact",
    )
    dependency_update: bool = Field(
        default=False,
        alias="vendor_update",
        description="Replace the dependency directory from the artifact",
    )
    description: str = Field(default="", description="Release notes")
    script_name: str | None = Field(
        default=None,
        description="Hook script name (defaults to the configured script_filename)",
    )

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate the version is a valid semantic version."""
        parse_semantic_version(v)
        return v

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> UpdateManifest:
        """
        Build a manifest from decoded JSON.

        Raises:
            InvalidArgumentError: If required fields are missing or invalid.
        """
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise InvalidArgumentError(
                "Invalid update manifest",
                details={"errors": e.errors(include_url=False, include_context=False)},
            ) from e

    @classmethod
    def from_file(cls, path: Path) -> UpdateManifest:
        """Load a manifest from a JSON file."""
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise InvalidArgumentError(
                f"Unreadable update manifest: {path.name}",
                details={"path": str(path), "error": str(e)},
            ) from e
        if not isinstance(data, dict):
            raise InvalidArgumentError(
                "Update manifest must be a JSON object",
                details={"path": str(path)},
            )
        return cls.from_mapping(data)

    def to_wire(self) -> dict[str, Any]:
        """Serialize using the external field names."""
        return self.model_dump(by_alias=True, exclude_none=True)
