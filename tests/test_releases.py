# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2025 The GameLog Authors

"""
GameLog Release Registry Tests

Tests for version comparison, release lookups and update checks.
Run with: pytest tests/test_releases.py -v
"""

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from gamelog.errors import NotFoundError, ReleaseLookupError
from gamelog.releases import (
    ReleaseClient,
    ReleaseInfo,
    check_for_updates,
    compare_versions,
    is_newer_version,
    parse_version,
)


def _release_payload(tag, name=None, assets=(), draft=False, prerelease=False):
    return {
        "tag_name": tag,
        "name": name if name is not None else tag.lstrip("v"),
        "body": "Release notes",
        "published_at": "2026-10-01T12:00:00Z",
        "html_url": f"https://github.com/horlesq/gamelog/releases/tag/{tag}",
        "draft": draft,
        "prerelease": prerelease,
        "assets": [
            {"name": asset, "browser_download_url": f"https://downloads.example/{asset}", "size": 1024}
            for asset in assets
        ],
    }


def _registry(routes):
    """Serve fixed JSON payloads at GitHub-style release paths."""
    app = web.Application()
    for path, (status, payload) in routes.items():
        async def handler(request, status=status, payload=payload):
            return web.json_response(payload, status=status)
        app.router.add_get(path, handler)
    return TestServer(app)


def _client(server):
    return ReleaseClient(
        "horlesq",
        "gamelog",
        api_base=str(server.make_url("/")).rstrip("/"),
    )


# =============================================================================
# VERSION COMPARISON
# =============================================================================

def test_parse_version():
    """Test version strings are parsed into tuples."""
    assert parse_version("1.4.0") == (1, 4, 0)
    assert parse_version("v2.0.1") == (2, 0, 1)
    assert parse_version("1.5.0-beta.2") == (1, 5, 0)
    assert parse_version("1.x") == (1, 0)


def test_compare_versions():
    """Test missing parts compare as zero."""
    assert compare_versions("1.2", "1.2.0") == 0
    assert compare_versions("1.2.1", "1.2") == 1
    assert compare_versions("1.9.9", "1.10.0") == -1


def test_is_newer_version():
    """Test newer-version detection."""
    assert is_newer_version("1.4.0", "1.3.9")
    assert not is_newer_version("1.3.0", "1.3.0")
    assert not is_newer_version("v1.2.0", "1.3.0")


# =============================================================================
# RELEASE CLIENT
# =============================================================================

@pytest.mark.asyncio
async def test_resolve_artifact_url():
    """Test the named release asset is resolved for a version."""
    routes = {
        "/repos/horlesq/gamelog/releases/tags/1.4.0": (
            200, _release_payload("1.4.0", assets=["gamelog-built-1.4.0.tar.gz", "checksums.txt"])
        ),
    }
    async with _registry(routes) as server:
        url = await _client(server).resolve_artifact_url("1.4.0")

    assert url == "https://downloads.example/gamelog-built-1.4.0.tar.gz"


@pytest.mark.asyncio
async def test_resolve_artifact_url_v_prefixed_tag():
    """Test a 'v'-prefixed tag is found when the plain tag is missing."""
    routes = {
        "/repos/horlesq/gamelog/releases/tags/v1.4.0": (
            200, _release_payload("v1.4.0", assets=["gamelog-built-1.4.0.tar.gz"])
        ),
    }
    async with _registry(routes) as server:
        url = await _client(server).resolve_artifact_url("1.4.0")

    assert url.endswith("gamelog-built-1.4.0.tar.gz")


@pytest.mark.asyncio
async def test_resolve_artifact_url_missing_release():
    """Test an unknown version raises NotFoundError."""
    async with _registry({}) as server:
        with pytest.raises(NotFoundError, match="No updates available"):
            await _client(server).resolve_artifact_url("9.9.9")


@pytest.mark.asyncio
async def test_resolve_artifact_url_missing_asset():
    """Test a release without the prebuilt archive raises NotFoundError."""
    routes = {
        "/repos/horlesq/gamelog/releases/tags/1.4.0": (
            200, _release_payload("1.4.0", assets=["source.zip"])
        ),
    }
    async with _registry(routes) as server:
        with pytest.raises(NotFoundError):
            await _client(server).resolve_artifact_url("1.4.0")


@pytest.mark.asyncio
async def test_registry_error_raises_lookup_error():
    """Test server errors surface as ReleaseLookupError."""
    routes = {
        "/repos/horlesq/gamelog/releases/tags/1.4.0": (500, {"message": "boom"}),
    }
    async with _registry(routes) as server:
        with pytest.raises(ReleaseLookupError):
            await _client(server).resolve_artifact_url("1.4.0")


@pytest.mark.asyncio
async def test_fetch_latest_uses_release_name_as_version():
    """Test the release name carries the version."""
    routes = {
        "/repos/horlesq/gamelog/releases/latest": (200, _release_payload("v1.4.0", name="1.4.0")),
    }
    async with _registry(routes) as server:
        release = await _client(server).fetch_latest()

    assert release.version == "1.4.0"
    assert release.tag_name == "v1.4.0"


# =============================================================================
# UPDATE CHECK
# =============================================================================

class _StubClient:
    def __init__(self, release=None, error=None):
        self.release = release
        self.error = error

    async def fetch_latest(self):
        if self.error:
            raise self.error
        return self.release


def _release(version="1.4.0", draft=False, prerelease=False):
    return ReleaseInfo(
        version=version,
        tag_name=f"v{version}",
        name=version,
        body="notes",
        published_at="2026-10-01T12:00:00Z",
        html_url="https://github.com/horlesq/gamelog/releases/tag/v1.4.0",
        draft=draft,
        prerelease=prerelease,
    )


@pytest.mark.asyncio
async def test_check_for_updates_available():
    """Test a newer release is reported with its details."""
    result = await check_for_updates(_StubClient(_release("1.4.0")), "1.3.0")

    assert result.has_update is True
    assert result.latest_version == "1.4.0"
    data = result.to_dict()
    assert data["currentVersion"] == "1.3.0"
    assert data["releaseInfo"]["tag"] == "v1.4.0"
    assert data["releaseInfo"]["notes"] == "notes"


@pytest.mark.asyncio
async def test_check_for_updates_up_to_date():
    """Test the same version is not an update."""
    result = await check_for_updates(_StubClient(_release("1.3.0")), "1.3.0")

    assert result.has_update is False
    assert result.latest_version == "1.3.0"
    assert "releaseInfo" not in result.to_dict()


@pytest.mark.asyncio
async def test_check_for_updates_no_releases():
    """Test a repository without releases."""
    result = await check_for_updates(_StubClient(None), "1.3.0")

    assert result.has_update is False
    assert result.error == "No releases found"


@pytest.mark.asyncio
async def test_check_for_updates_skips_prerelease():
    """Test pre-releases are never offered."""
    result = await check_for_updates(_StubClient(_release("2.0.0", prerelease=True)), "1.3.0")

    assert result.has_update is False
    assert result.message == "Latest release is draft or prerelease"


@pytest.mark.asyncio
async def test_check_for_updates_never_raises():
    """Test registry failures are reported, not raised."""
    client = _StubClient(error=ReleaseLookupError("Failed to query release registry"))

    result = await check_for_updates(client, "1.3.0")

    assert result.has_update is False
    assert result.error == "Failed to check for updates"
