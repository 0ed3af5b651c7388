# SPDX-License-Identifier: GPL-3.0-only
# SPDX-FileCopyrightText: Copyright (c) 2025 The GameLog Authors

"""
GameLog Release Registry

Talks to GitHub Releases: version comparison, latest-release checks for
the admin dashboard, and resolving the download URL of the prebuilt
release archive for a given version.
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from . import __version__
from .errors import NotFoundError, ReleaseLookupError

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"
API_TIMEOUT = 30


# =============================================================================
# VERSION COMPARISON
# =============================================================================

def parse_version(version_str: str) -> Tuple[int, ...]:
    """Parse a version string into a comparable tuple.

    Strips a leading 'v' and ignores pre-release suffixes (-beta, -rc1).
    Non-numeric parts count as 0.
    """
    clean = version_str.strip().lstrip("v")
    base = clean.split("-")[0]
    parts = []
    for part in base.split("."):
        try:
            parts.append(int(part))
        except ValueError:
            parts.append(0)
    return tuple(parts)


def compare_versions(left: str, right: str) -> int:
    """Return -1, 0 or 1; missing trailing parts count as 0 (1.2 == 1.2.0)."""
    a = list(parse_version(left))
    b = list(parse_version(right))
    length = max(len(a), len(b))
    a += [0] * (length - len(a))
    b += [0] * (length - len(b))
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def is_newer_version(latest: str, current: str) -> bool:
    """Check if latest version is newer than current version."""
    return compare_versions(latest, current) > 0


# =============================================================================
# DATA MODELS
# =============================================================================

@dataclass
class ReleaseInfo:
    """Information about a GitHub release."""
    version: str
    tag_name: str
    name: str
    body: str
    published_at: str
    html_url: str
    prerelease: bool = False
    draft: bool = False
    assets: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def find_asset(self, name: str) -> Optional[Dict[str, Any]]:
        return next((a for a in self.assets if a["name"] == name), None)


@dataclass
class VersionCheckResult:
    """Outcome of comparing the running version with the latest release."""
    current_version: str
    has_update: bool = False
    latest_version: Optional[str] = None
    release_info: Optional[ReleaseInfo] = None
    error: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "currentVersion": self.current_version,
            "hasUpdate": self.has_update,
        }
        if self.latest_version is not None:
            d["latestVersion"] = self.latest_version
        if self.release_info is not None:
            d["releaseInfo"] = {
                "name": self.release_info.name,
                "tag": self.release_info.tag_name,
                "publishedAt": self.release_info.published_at,
                "url": self.release_info.html_url,
                "notes": self.release_info.body,
            }
        if self.error is not None:
            d["error"] = self.error
        if self.message is not None:
            d["message"] = self.message
        return d


# =============================================================================
# GITHUB CLIENT
# =============================================================================

class ReleaseClient:
    """Read-only client for a repository's GitHub Releases.

    Usage:
        client = ReleaseClient("horlesq", "gamelog")
        url = await client.resolve_artifact_url("1.4.0")
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        token: Optional[str] = None,
        artifact_template: str = "gamelog-built-{version}.tar.gz",
        api_base: str = GITHUB_API_BASE,
    ):
        self.owner = owner
        self.repo = repo
        self.token = token
        self.artifact_template = artifact_template
        self.releases_url = f"{api_base}/repos/{owner}/{repo}/releases"

    def _get_headers(self) -> Dict[str, str]:
        """Get HTTP headers for GitHub API requests."""
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": f"GameLog-Updater/{__version__}",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _get_release(self, url: str) -> Optional[ReleaseInfo]:
        """GET a single release; None on 404."""
        try:
            async with aiohttp.ClientSession() as session:
                timeout = aiohttp.ClientTimeout(total=API_TIMEOUT)
                async with session.get(url, headers=self._get_headers(), timeout=timeout) as resp:
                    if resp.status == 404:
                        return None
                    resp.raise_for_status()
                    data = await resp.json()
                    return self._parse_release(data)
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.error("GitHub API request failed: %s", e)
            raise ReleaseLookupError(f"Failed to query release registry: {e}") from e

    async def fetch_latest(self) -> Optional[ReleaseInfo]:
        """Fetch the latest published release (GitHub excludes drafts and pre-releases)."""
        return await self._get_release(f"{self.releases_url}/latest")

    async def fetch_by_tag(self, tag: str) -> Optional[ReleaseInfo]:
        """Fetch a release by tag, trying a 'v'-prefixed tag as fallback."""
        release = await self._get_release(f"{self.releases_url}/tags/{tag}")
        if release is None and not tag.startswith("v"):
            release = await self._get_release(f"{self.releases_url}/tags/v{tag}")
        return release

    async def resolve_artifact_url(self, version: str) -> str:
        """Return the download URL of the prebuilt archive for a version.

        Raises:
            NotFoundError: No release or no matching asset for the version.
            ReleaseLookupError: The registry could not be reached.
        """
        release = await self.fetch_by_tag(version)
        if release is None:
            logger.warning("No release tagged %s in %s/%s", version, self.owner, self.repo)
            raise NotFoundError("No updates available")

        asset_name = self.artifact_template.format(version=version)
        asset = release.find_asset(asset_name)
        if asset is None:
            logger.warning("Release %s has no asset named %s", release.tag_name, asset_name)
            raise NotFoundError("No updates available")

        logger.info("Resolved release asset %s", asset["url"])
        return asset["url"]

    def _parse_release(self, data: Dict[str, Any]) -> ReleaseInfo:
        """Parse a GitHub release API response into ReleaseInfo."""
        tag = data.get("tag_name") or ""
        # Release names carry the plain version number; tags may be prefixed
        version = data.get("name") or tag.lstrip("v") or "0.0.0"

        return ReleaseInfo(
            version=version,
            tag_name=tag,
            name=data.get("name") or "",
            body=data.get("body") or "",
            published_at=data.get("published_at") or "",
            html_url=data.get("html_url") or "",
            prerelease=data.get("prerelease", False),
            draft=data.get("draft", False),
            assets=[
                {
                    "name": a["name"],
                    "url": a["browser_download_url"],
                    "size": a.get("size", 0),
                }
                for a in data.get("assets", [])
            ],
        )


# =============================================================================
# VERSION CHECK
# =============================================================================

async def check_for_updates(
    client: ReleaseClient,
    current_version: str = __version__,
) -> VersionCheckResult:
    """Compare the running version with the latest GitHub release.

    Never raises: failures are reported in the result's ``error`` field.
    """
    try:
        release = await client.fetch_latest()
    except Exception as e:
        logger.error("Error checking for updates: %s", e)
        return VersionCheckResult(
            current_version=current_version,
            error="Failed to check for updates",
        )

    if release is None:
        return VersionCheckResult(current_version=current_version, error="No releases found")

    if release.draft or release.prerelease:
        return VersionCheckResult(
            current_version=current_version,
            message="Latest release is draft or prerelease",
        )

    has_update = is_newer_version(release.version, current_version)
    if has_update:
        logger.info("Update available: %s -> %s", current_version, release.version)
    else:
        logger.debug("Already up to date (%s)", current_version)

    return VersionCheckResult(
        current_version=current_version,
        has_update=has_update,
        latest_version=release.version,
        release_info=release if has_update else None,
    )
