"""
Tests for artifact retrieval and remote update checks.

HTTP traffic is served by httpx.MockTransport; nothing leaves the process.
"""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from site_updater.config import LicenseConfig, UpdaterConfig
from site_updater.context import OperationContext
from site_updater.errors import FetchError
from site_updater.updates.fetcher import ArchiveFetcher, HttpxFetcher

BASE_URL = "https://updates.example.com/releases"


def _fetcher(
    config: UpdaterConfig,
    handler,
    license: LicenseConfig | None = None,
) -> ArchiveFetcher:
    return ArchiveFetcher(
        config,
        license=license,
        http=HttpxFetcher(transport=httpx.MockTransport(handler)),
    )


# =============================================================================
# Tests for HttpxFetcher
# =============================================================================


class TestHttpxFetcher:
    """Tests for the httpx-backed capability."""

    def test_download(self, tmp_path: Path) -> None:
        fetcher = HttpxFetcher(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, content=b"PK..."))
        )

        path = fetcher.download(f"{BASE_URL}/v1.zip", tmp_path / "v1.zip")

        assert path.read_bytes() == b"PK..."
        assert not (tmp_path / "v1.zip.part").exists()

    def test_download_status_error_leaves_nothing(self, tmp_path: Path) -> None:
        fetcher = HttpxFetcher(transport=httpx.MockTransport(lambda request: httpx.Response(404)))

        with pytest.raises(FetchError) as exc_info:
            fetcher.download(f"{BASE_URL}/v1.zip", tmp_path / "v1.zip")

        assert exc_info.value.details["status_code"] == 404
        assert list(tmp_path.iterdir()) == []

    def test_download_network_error(self, tmp_path: Path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        fetcher = HttpxFetcher(transport=httpx.MockTransport(handler))

        with pytest.raises(FetchError):
            fetcher.download(f"{BASE_URL}/v1.zip", tmp_path / "v1.zip")

    def test_request_json_get_uses_query(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        fetcher = HttpxFetcher(transport=httpx.MockTransport(handler))

        assert fetcher.request_json("get", BASE_URL, payload={"version": "1.0.0"}) == {"ok": True}
        assert seen[0].method == "GET"
        assert seen[0].url.params["version"] == "1.0.0"

    def test_request_json_post_uses_body(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[])

        fetcher = HttpxFetcher(transport=httpx.MockTransport(handler))
        fetcher.request_json("post", BASE_URL, payload={"version": "1.0.0"})

        assert json.loads(seen[0].content) == {"version": "1.0.0"}

    def test_request_json_invalid_body(self) -> None:
        fetcher = HttpxFetcher(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>"))
        )

        with pytest.raises(FetchError):
            fetcher.request_json("get", BASE_URL)


# =============================================================================
# Tests for ArchiveFetcher
# =============================================================================


class TestArchiveFetcher:
    """Tests for ArchiveFetcher."""

    def test_fetch_into_scratch_directory(
        self, updater_config: UpdaterConfig, ctx: OperationContext
    ) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=b"artifact")

        fetcher = _fetcher(updater_config, handler, LicenseConfig(key="K-1", name="Acme"))

        path = fetcher.fetch("v1.2.0.zip", ctx)

        assert path == updater_config.resolve(updater_config.tmp_directory) / "v1.2.0.zip"
        assert path.read_bytes() == b"artifact"
        assert str(seen[0].url) == f"{BASE_URL}/v1.2.0.zip"
        assert seen[0].headers["X-License-Key"] == "K-1"

    def test_fetch_uses_basename_only(
        self, updater_config: UpdaterConfig, ctx: OperationContext
    ) -> None:
        fetcher = _fetcher(updater_config, lambda request: httpx.Response(200, content=b"x"))

        path = fetcher.fetch("../../outside.zip", ctx)

        assert path.parent == updater_config.resolve(updater_config.tmp_directory)

    def test_fetch_empty_name(self, updater_config: UpdaterConfig, ctx: OperationContext) -> None:
        fetcher = _fetcher(updater_config, lambda request: httpx.Response(200))

        with pytest.raises(FetchError):
            fetcher.fetch("", ctx)

    def test_fetch_failure(self, updater_config: UpdaterConfig, ctx: OperationContext) -> None:
        fetcher = _fetcher(updater_config, lambda request: httpx.Response(500))

        with pytest.raises(FetchError):
            fetcher.fetch("v1.2.0.zip", ctx)

    def test_stage_local(
        self, tmp_path: Path, updater_config: UpdaterConfig, ctx: OperationContext
    ) -> None:
        artifact = tmp_path / "upload.zip"
        artifact.write_bytes(b"x")
        fetcher = ArchiveFetcher(updater_config)

        assert fetcher.stage_local(artifact, ctx) == artifact
        with pytest.raises(FetchError):
            fetcher.stage_local(tmp_path / "missing.zip", ctx)


class TestUpdateCheck:
    """Tests for ArchiveFetcher.check_for_update."""

    def test_newer_version_available(
        self, updater_config: UpdaterConfig, ctx: OperationContext
    ) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"version": "1.2.0", "archive": "v1.2.0.zip"})

        check = _fetcher(updater_config, handler).check_for_update("1.1.0", ctx)

        assert check.available
        assert check.manifest is not None
        assert check.manifest.archive_ref == "v1.2.0.zip"
        assert str(seen[0].url) == f"{BASE_URL}/updates.json"
        assert seen[0].method == "POST"
        assert check.to_dict()["manifest"]["archive"] == "v1.2.0.zip"

    @pytest.mark.parametrize("remote", ["1.1.0", "1.0.9"])
    def test_not_newer(
        self, updater_config: UpdaterConfig, ctx: OperationContext, remote: str
    ) -> None:
        handler = lambda request: httpx.Response(200, json={"version": remote})  # noqa: E731

        check = _fetcher(updater_config, handler).check_for_update("1.1.0", ctx)

        assert check.status == "none"
        assert check.manifest is None

    def test_disabled(self, updater_config: UpdaterConfig, ctx: OperationContext) -> None:
        config = updater_config.model_copy(update={"online_check": False})

        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        check = _fetcher(config, handler).check_for_update("1.1.0", ctx)

        assert check.status == "disabled"

    @pytest.mark.parametrize("body", [["1.2.0"], {"archive": "x.zip"}, {"version": "next"}])
    def test_invalid_response(
        self, updater_config: UpdaterConfig, ctx: OperationContext, body: object
    ) -> None:
        handler = lambda request: httpx.Response(200, json=body)  # noqa: E731

        with pytest.raises(FetchError):
            _fetcher(updater_config, handler).check_for_update("1.1.0", ctx)
