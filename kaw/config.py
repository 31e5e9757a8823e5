"""Watcher configuration — environment parsing and reference handling.

All settings come from environment variables. ``load_config`` turns an
environment mapping into an immutable ``WatchConfig`` and raises
``ConfigError`` for anything the watcher cannot start with.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Mapping

import structlog

from kaw.errors import ConfigError

logger = structlog.get_logger(__name__)

DEFAULT_POLL_INTERVAL = 30
DEFAULT_STATE_DIR = "/tmp/kyverno-watcher"
LAST_SEEN_FILE = "last_seen"
OWNER_TYPES = ("users", "orgs")


class Provider(Enum):
    """Which registry flavour is being watched."""

    GITHUB = "github"  # GitHub Packages API + ghcr.io layer walk
    ARTIFACTORY = "artifactory"  # Static reference, ORAS copy


@dataclass(frozen=True)
class WatchConfig:
    provider: Provider
    image_base: str
    owner: str
    package: str
    package_normalized: str
    poll_interval: int = DEFAULT_POLL_INTERVAL
    github_token: str = ""
    github_api_owner_type: str = "users"
    username: str = ""
    password: str = ""
    state_dir: Path = Path(DEFAULT_STATE_DIR)
    work_dir: Path = Path(tempfile.gettempdir())
    apply_command: str = "kubectl"
    log_level: str = "INFO"
    log_format: str = "json"

    @property
    def last_file(self) -> Path:
        return self.state_dir / LAST_SEEN_FILE

    @property
    def repository(self) -> str:
        """The image base without its tag."""
        return split_reference(self.image_base)[0]

    @property
    def tag(self) -> str:
        return split_reference(self.image_base)[1]

    @property
    def registry_host(self) -> str:
        return self.image_base.split("/", 1)[0]


def get_env_or_default(environ: Mapping[str, str], key: str, default: str) -> str:
    """Return the variable's value, or *default* when unset or empty."""
    value = environ.get(key, "")
    return value if value else default


def get_env_as_int_or_default(environ: Mapping[str, str], key: str, default: int) -> int:
    """Return the variable as an int, or *default* when unset or not numeric."""
    value = environ.get(key, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def parse_image_base(image_base: str) -> tuple[str, str]:
    """Extract ``(owner, package)`` from ``registry/owner/package[:tag]``.

    Everything after the first ``:`` is dropped, then the remainder is split
    on ``/``: segment 1 is the owner and segments 2+ form the package.

    Raises:
        ConfigError: If fewer than three segments are present, or the owner
            or package is empty.
    """
    base = image_base.split(":")[0]
    parts = base.split("/")
    if len(parts) < 3:
        raise ConfigError(
            f"IMAGE_BASE must be in format ghcr.io/owner/package, got: {base}"
        )

    owner = parts[1]
    package = "/".join(parts[2:])
    if not owner or not package:
        raise ConfigError(
            f"could not extract owner and package from IMAGE_BASE: {base}"
        )
    return owner, package


def split_reference(reference: str) -> tuple[str, str]:
    """Split ``repo[:tag]`` into ``(repo, tag)``; tag is ``""`` when absent.

    Only a colon in the final path segment starts a tag, so a registry port
    (``host:5000/owner/pkg``) is not mistaken for one.
    """
    repo, sep, tag = reference.rpartition(":")
    if not sep or "/" in tag:
        return reference, ""
    return repo, tag


def sanitize_token(token: str) -> str:
    """Strip whitespace and drop anything outside printable ASCII."""
    return "".join(ch for ch in token.strip() if 32 <= ord(ch) <= 126)


def mask_token(token: str) -> str:
    return token[:10] + "..." if len(token) > 10 else token


def load_config(environ: Mapping[str, str] | None = None) -> WatchConfig:
    """Build a ``WatchConfig`` from environment variables.

    Args:
        environ: Mapping to read from. Defaults to ``os.environ``.

    Raises:
        ConfigError: On an unsupported provider, missing ``IMAGE_BASE`` or
            credentials, a malformed reference, or an unknown owner type.
    """
    env = os.environ if environ is None else environ

    provider_name = get_env_or_default(env, "PROVIDER", "github").lower()
    try:
        provider = Provider(provider_name)
    except ValueError:
        raise ConfigError(
            f"Unsupported PROVIDER: {provider_name} (must be 'github' or 'artifactory')"
        ) from None

    image_base = env.get("IMAGE_BASE", "").strip()
    if not image_base:
        raise ConfigError(
            "IMAGE_BASE environment variable must be set (e.g., ghcr.io/owner/package)"
        )

    owner, package = parse_image_base(image_base)

    github_token = username = password = ""
    if provider == Provider.GITHUB:
        raw_token = env.get("GITHUB_TOKEN", "").strip()
        if not raw_token:
            raise ConfigError("GITHUB_TOKEN environment variable must be set")
        github_token = sanitize_token(raw_token)
        if not github_token:
            raise ConfigError("GITHUB_TOKEN contains only invalid characters")
        logger.info(
            "github_token_loaded",
            token_prefix=mask_token(github_token),
            length=len(github_token),
        )
    else:
        username = env.get("ARTIFACTORY_USERNAME", "").strip()
        password = env.get("ARTIFACTORY_PASSWORD", "").strip()
        if not username or not password:
            raise ConfigError(
                "ARTIFACTORY_USERNAME and ARTIFACTORY_PASSWORD environment variables "
                "must be set for artifactory provider"
            )
        logger.info("artifactory_credentials_loaded", username=username)

    owner_type = get_env_or_default(env, "GITHUB_API_OWNER_TYPE", "users").lower()
    if owner_type not in OWNER_TYPES:
        raise ConfigError(
            f"Unsupported GITHUB_API_OWNER_TYPE: {owner_type} (must be 'users' or 'orgs')"
        )

    poll_interval = get_env_as_int_or_default(env, "POLL_INTERVAL", DEFAULT_POLL_INTERVAL)
    if poll_interval <= 0:
        poll_interval = DEFAULT_POLL_INTERVAL

    log_format = get_env_or_default(env, "LOG_FORMAT", "json").lower()
    if log_format not in ("json", "console"):
        raise ConfigError(f"Unsupported LOG_FORMAT: {log_format} (must be 'json' or 'console')")

    return WatchConfig(
        provider=provider,
        image_base=image_base,
        owner=owner,
        package=package,
        package_normalized=package.replace("/", "%2F"),
        poll_interval=poll_interval,
        github_token=github_token,
        github_api_owner_type=owner_type,
        username=username,
        password=password,
        state_dir=Path(get_env_or_default(env, "STATE_DIR", DEFAULT_STATE_DIR)),
        work_dir=Path(get_env_or_default(env, "WORK_DIR", tempfile.gettempdir())),
        apply_command=get_env_or_default(env, "APPLY_COMMAND", "kubectl"),
        log_level=get_env_or_default(env, "LOG_LEVEL", "INFO").upper(),
        log_format=log_format,
    )
