"""Version resolution — decide what the currently published version is.

The GitHub resolver asks the packages API for every version of the package
and picks the most recently updated one. The reference resolver simply uses
the tag of the configured image reference.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

import httpx
import structlog

from kaw.config import Provider, WatchConfig, split_reference
from kaw.errors import AuthError, ConfigError, NotFoundError, ProtocolError
from kaw.registry.models import EPOCH, PackageVersion, ResolvedVersion

logger = structlog.get_logger(__name__)

GITHUB_API_URL = "https://api.github.com"


class VersionResolver(Protocol):
    def resolve(self) -> ResolvedVersion | None:
        """Return the current version, or None when nothing is published."""
        ...


class GitHubPackagesResolver:
    """Resolves the newest container package version via the GitHub API."""

    def __init__(
        self,
        config: WatchConfig,
        client: httpx.Client | None = None,
        api_url: str = GITHUB_API_URL,
    ) -> None:
        self.config = config
        self.api_url = api_url.rstrip("/")
        self._client = client or httpx.Client()

    @property
    def versions_url(self) -> str:
        return (
            f"{self.api_url}/{self.config.github_api_owner_type}/{self.config.owner}"
            f"/packages/container/{self.config.package_normalized}/versions"
        )

    def resolve(self) -> ResolvedVersion | None:
        versions = self.list_versions()
        if not versions:
            return None

        latest = select_latest(versions)
        logger.debug(
            "latest_package_version",
            version_id=latest.id,
            tags=latest.tags,
            updated_at=latest.updated_at.isoformat(),
        )
        return ResolvedVersion(
            identifier=latest.identifier,
            digest=latest.name,
            tagged=bool(latest.tags),
        )

    def list_versions(self) -> list[PackageVersion]:
        """Fetch every known version, following ``Link: rel=next`` pages."""
        headers = {
            "Authorization": f"token {self.config.github_token}",
            "Accept": "application/vnd.github.v3+json",
        }
        versions: list[PackageVersion] = []
        url: str | None = self.versions_url

        while url:
            try:
                resp = self._client.get(url, headers=headers)
            except httpx.HTTPError as e:
                raise ProtocolError(f"failed to make API request: {e}") from e

            if resp.status_code != 200:
                self._raise_for_status(resp)

            try:
                payload = resp.json()
            except ValueError as e:
                raise ProtocolError(
                    f"failed to parse GitHub API response: {e}. Response body: {resp.text[:500]}"
                ) from e

            versions.extend(_parse_versions(payload))
            url = resp.links.get("next", {}).get("url")

        return versions

    def _raise_for_status(self, resp: httpx.Response) -> None:
        message = _error_message(resp)
        status = resp.status_code

        if status == 401:
            raise AuthError(
                "authentication failed (401): invalid or expired GITHUB_TOKEN "
                "(the token needs the read:packages scope)"
            )
        if status == 403:
            raise AuthError(
                "access forbidden (403): token may lack required permissions "
                f"(read:packages). Message: {message}"
            )
        if status == 404:
            raise NotFoundError(
                f"package not found (404): owner={self.config.owner}, "
                f"package={self.config.package} (owner type: "
                f"{self.config.github_api_owner_type}). "
                "Verify package exists and token has access"
            )
        raise ProtocolError(f"GitHub API returned status {status}: {message}")


class ReferenceTagResolver:
    """Uses the tag of the configured reference as the version."""

    def __init__(self, config: WatchConfig) -> None:
        self.config = config

    def resolve(self) -> ResolvedVersion | None:
        _, tag = split_reference(self.config.image_base)
        if not tag:
            raise ConfigError(
                "IMAGE_BASE for artifactory must include a tag (e.g., registry/path:tag)"
            )
        return ResolvedVersion(identifier=tag)


def build_resolver(config: WatchConfig, client: httpx.Client | None = None) -> VersionResolver:
    """Pick the resolver matching the configured provider."""
    if config.provider == Provider.GITHUB:
        return GitHubPackagesResolver(config, client=client)
    return ReferenceTagResolver(config)


def select_latest(versions: list[PackageVersion]) -> PackageVersion:
    """Return the most recently updated version; the earliest entry wins ties."""
    latest = versions[0]
    for version in versions:
        if version.updated_at > latest.updated_at:
            latest = version
    return latest


def _parse_versions(payload: object) -> list[PackageVersion]:
    if not isinstance(payload, list):
        raise ProtocolError(
            f"unexpected GitHub API response: expected a list, got {type(payload).__name__}"
        )

    versions = []
    for item in payload:
        if not isinstance(item, dict) or "id" not in item:
            raise ProtocolError(f"unexpected package version entry: {item!r}")

        container = (item.get("metadata") or {}).get("container") or {}
        tags = container.get("tags") or []
        try:
            versions.append(
                PackageVersion(
                    id=int(item["id"]),
                    name=str(item.get("name") or ""),
                    updated_at=_parse_timestamp(item.get("updated_at")),
                    tags=[str(t) for t in tags],
                )
            )
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"malformed package version entry {item.get('id')!r}: {e}") from e
    return versions


def _parse_timestamp(value: object) -> datetime:
    if not value:
        return EPOCH
    if not isinstance(value, str):
        raise ValueError(f"updated_at is not a string: {value!r}")
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=EPOCH.tzinfo)
    return parsed


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return ""
    if isinstance(data, dict):
        return str(data.get("message", ""))
    return ""
