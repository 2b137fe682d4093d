"""
Artifact retrieval and remote update checks.

HttpxFetcher is the HttpFetcher capability (blocking httpx.Client with an
injectable transport for tests). ArchiveFetcher builds on it to download
update artifacts into the updater's scratch directory and to ask the remote
side whether a newer version exists.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any

import httpx

from site_updater.errors import FailedPreconditionError, FetchError, InvalidArgumentError
from site_updater.logging import get_logger
from site_updater.updates.manifest import UpdateManifest
from site_updater.updates.operations import LocalFileSystem, ensure_directory
from site_updater.updates.version import is_newer

if TYPE_CHECKING:
    from site_updater.config import LicenseConfig, UpdaterConfig
    from site_updater.context import OperationContext
    from site_updater.updates.capabilities import FileSystem, HttpFetcher

logger = get_logger(__name__)

UPDATE_INFO_FILENAME = "updates.json"

_CHUNK_SIZE = 64 * 1024


class HttpxFetcher:
    """
    HttpFetcher capability backed by httpx.

    Args:
        transport: Optional httpx transport (e.g. httpx.MockTransport in tests).
    """

    def __init__(self, transport: httpx.BaseTransport | None = None) -> None:
        self._transport = transport

    def _client(self, timeout: float) -> httpx.Client:
        return httpx.Client(
            timeout=timeout,
            transport=self._transport,
            follow_redirects=True,
        )

    def download(
        self,
        url: str,
        destination: Path,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float = 60.0,
    ) -> Path:
        """
        Stream `url` to `destination`.

        The body is written to a sibling ".part" file and renamed into place
        once complete, so a failed download never leaves a truncated artifact.

        Raises:
            FetchError: On network failure, timeout, or a non-success status.
        """
        partial = destination.with_name(destination.name + ".part")
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            with self._client(timeout) as client:
                with client.stream("GET", url, headers=dict(headers or {})) as response:
                    response.raise_for_status()
                    with open(partial, "wb") as f:
                        for chunk in response.iter_bytes(_CHUNK_SIZE):
                            f.write(chunk)
            partial.replace(destination)
        except httpx.HTTPStatusError as e:
            partial.unlink(missing_ok=True)
            raise FetchError(
                f"Download failed with status {e.response.status_code}",
                details={"url": url, "status_code": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            partial.unlink(missing_ok=True)
            raise FetchError(
                f"Download failed: {e}",
                details={"url": url, "error": type(e).__name__},
            ) from e
        except OSError as e:
            partial.unlink(missing_ok=True)
            raise FetchError(
                f"Failed to write downloaded artifact: {e}",
                details={"url": url, "destination": str(destination)},
            ) from e

        logger.debug("Downloaded artifact", extra={"url": url, "path": str(destination)})
        return destination

    def request_json(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float = 60.0,
        payload: Mapping[str, Any] | None = None,
    ) -> Any:
        """
        Perform a request and decode its JSON body.

        Raises:
            FetchError: On network failure, non-success status, or invalid JSON.
        """
        method = method.upper()
        kwargs: dict[str, Any] = {"headers": dict(headers or {})}
        if payload is not None:
            if method == "GET":
                kwargs["params"] = dict(payload)
            else:
                kwargs["json"] = dict(payload)

        try:
            with self._client(timeout) as client:
                response = client.request(method, url, **kwargs)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            raise FetchError(
                f"Request failed with status {e.response.status_code}",
                details={"url": url, "status_code": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            raise FetchError(
                f"Request failed: {e}",
                details={"url": url, "error": type(e).__name__},
            ) from e
        except ValueError as e:
            raise FetchError(
                "Response is not valid JSON",
                details={"url": url},
            ) from e


@dataclass(frozen=True)
class UpdateCheck:
    """
    Result of a remote update check.

    Attributes:
        status: "available", "none" or "disabled".
        current_version: Installed version at the time of the check.
        manifest: Manifest of the newer version when status is "available".
    """

    status: str
    current_version: str
    manifest: UpdateManifest | None = None

    @property
    def available(self) -> bool:
        return self.status == "available"

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "status": self.status,
            "current_version": self.current_version,
        }
        if self.manifest is not None:
            result["manifest"] = self.manifest.to_wire()
        return result


class ArchiveFetcher:
    """
    Retrieves update artifacts into the updater's scratch directory.

    Args:
        config: Updater configuration (base URL, scratch directory, timeouts).
        license: License settings; headers are sent when a key is set.
        http: HttpFetcher capability.
        fs: FileSystem capability.
    """

    def __init__(
        self,
        config: UpdaterConfig,
        license: LicenseConfig | None = None,
        http: HttpFetcher | None = None,
        fs: FileSystem | None = None,
    ) -> None:
        self.config = config
        self.license = license
        self.http = http or HttpxFetcher()
        self.fs = fs or LocalFileSystem()

    @property
    def download_dir(self) -> Path:
        return self.config.resolve(self.config.tmp_directory)

    def _headers(self) -> dict[str, str]:
        return self.license.headers() if self.license is not None else {}

    def _url(self, name: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/{name.lstrip('/')}"

    def fetch(self, remote_name: str, ctx: OperationContext) -> Path:
        """
        Download a remote artifact.

        Args:
            remote_name: Artifact filename relative to the base URL.
            ctx: Operation context.

        Returns:
            Local path of the downloaded artifact.

        Raises:
            FetchError: If the name is empty, the download directory cannot be
                created or the download fails.
        """
        filename = PurePosixPath(remote_name.replace("\\", "/")).name
        if not filename:
            raise FetchError(
                "Artifact name is empty",
                details={"remote_name": remote_name},
            )

        try:
            ensure_directory(self.download_dir)
        except FailedPreconditionError as e:
            raise FetchError(
                f"Cannot prepare download directory: {e.message}",
                details=e.details,
            ) from e
        destination = self.download_dir / filename
        url = self._url(remote_name)
        ctx.info(f"Downloading update artifact {filename}")
        path = self.http.download(
            url,
            destination,
            headers=self._headers(),
            timeout=self.config.request_timeout,
        )
        if not self.fs.is_file(path):
            raise FetchError(
                "Downloaded artifact is missing",
                details={"path": str(path)},
            )
        ctx.info(f"Downloaded update artifact {filename}")
        return path

    def stage_local(self, archive_path: Path | str, ctx: OperationContext) -> Path:
        """
        Accept an artifact that is already on disk (e.g. an uploaded file).

        Raises:
            FetchError: If the file does not exist.
        """
        path = Path(archive_path)
        if not self.fs.is_file(path):
            raise FetchError(
                f"Update artifact not found: {path}",
                details={"path": str(path)},
            )
        ctx.info(f"Using local update artifact {path.name}")
        return path

    def check_for_update(
        self,
        current_version: str,
        ctx: OperationContext,
        *,
        url: str | None = None,
    ) -> UpdateCheck:
        """
        Ask the remote side for the latest available version.

        Online checks can be disabled in configuration, in which case the
        result reports "disabled" without any network access.

        Args:
            current_version: Installed version.
            ctx: Operation context.
            url: Override for the update information URL.

        Raises:
            FetchError: If the request fails or the response is not a manifest.
        """
        if not self.config.online_check:
            ctx.info("Online update check is disabled")
            return UpdateCheck(status="disabled", current_version=current_version)

        target = url or self._url(UPDATE_INFO_FILENAME)
        payload = {"version": current_version}
        data = self.http.request_json(
            self.config.check_method,
            target,
            headers=self._headers(),
            timeout=self.config.request_timeout,
            payload=payload,
        )
        if not isinstance(data, dict):
            raise FetchError("Update information must be a JSON object", details={"url": target})

        try:
            manifest = UpdateManifest.from_mapping(data)
        except InvalidArgumentError as e:
            raise FetchError(
                "Update information is not a valid manifest",
                details={"url": target, **e.details},
            ) from e

        if is_newer(manifest.version, current_version):
            ctx.info(f"Update available: {manifest.version}")
            return UpdateCheck(
                status="available",
                current_version=current_version,
                manifest=manifest,
            )

        ctx.info(f"No update available (current {current_version})")
        return UpdateCheck(status="none", current_version=current_version)
