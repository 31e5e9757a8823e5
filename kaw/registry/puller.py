"""Artifact pulling — materialize a registry artifact into a local directory.

Two strategies share the ``Puller`` protocol and are picked once from the
configured provider:

- ``LayerWalkPuller`` fetches the image manifest and writes each layer blob
  to ``layer-<n>.yaml`` (``policy-<n>.yaml`` for Kyverno policy layers).
- ``OrasCopyPuller`` authenticates with static credentials and lets ORAS copy the
  whole artifact into the directory, one blob at a time.

Both start from an empty destination.
"""

from __future__ import annotations

import gzip
import hashlib
import shutil
from pathlib import Path
from typing import Any, Callable, Protocol

import requests
import structlog
from oras.client import OrasClient

from kaw.config import Provider, WatchConfig
from kaw.errors import AuthError, NotFoundError, ProtocolError
from kaw.registry.models import LayerDescriptor, ResolvedVersion
from kaw.utils.file_scanner import find_manifest_files

logger = structlog.get_logger(__name__)

MANIFEST_MEDIA_TYPES = [
    "application/vnd.oci.image.manifest.v1+json",
    "application/vnd.docker.distribution.manifest.v2+json",
]
LAYER_FILE_EXTENSION = "yaml"

# Failures raised by oras: transport errors from requests, and ValueError for
# non-2xx responses
REGISTRY_ERRORS = (requests.exceptions.RequestException, ValueError)

ClientFactory = Callable[[WatchConfig], Any]


class Puller(Protocol):
    def pull(self, version: ResolvedVersion, dest_dir: Path) -> None:
        """Fill *dest_dir* with the artifact's content for *version*."""
        ...


def prepare_destination(dest_dir: Path) -> None:
    """Remove *dest_dir* if present and recreate it empty.

    Raises:
        OSError: If the old directory cannot be removed or the new one created.
    """
    if dest_dir.exists():
        shutil.rmtree(dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)


def layer_filename(index: int, layer: LayerDescriptor) -> str:
    prefix = "policy" if layer.is_policy_layer else "layer"
    return f"{prefix}-{index}.{LAYER_FILE_EXTENSION}"


def _token_client(config: WatchConfig) -> OrasClient:
    client = OrasClient(auth_backend="token")
    if config.github_token:
        client.auth.set_basic_auth(config.owner, config.github_token)
    return client


def _basic_client(config: WatchConfig) -> OrasClient:
    client = OrasClient(auth_backend="basic")
    client.auth.set_basic_auth(config.username, config.password)
    return client


def _registry_error(error: Exception, reference: str) -> Exception:
    """Map a registry client failure onto the watcher's error types."""
    message = str(error)
    lowered = message.lower()
    if "manifest unknown" in lowered or "not found" in lowered:
        return NotFoundError(f"artifact not found: {reference}: {message}")
    if "unauthorized" in lowered or "denied" in lowered or "forbidden" in lowered:
        return AuthError(f"registry rejected credentials for {reference}: {message}")
    return ProtocolError(f"registry request failed for {reference}: {message}")


class LayerWalkPuller:
    """Writes every manifest layer of the versioned image to its own file."""

    def __init__(self, config: WatchConfig, client_factory: ClientFactory | None = None):
        self.config = config
        self._client_factory = client_factory or _token_client

    def reference_for(self, version: ResolvedVersion) -> str:
        """Tagged versions pull by tag; synthesized ones pull by digest."""
        if not version.tagged and version.digest:
            return f"{self.config.repository}@{version.digest}"
        return f"{self.config.repository}:{version.identifier}"

    def pull(self, version: ResolvedVersion, dest_dir: Path) -> None:
        prepare_destination(dest_dir)
        reference = self.reference_for(version)
        log = logger.bind(reference=reference, dest=str(dest_dir))
        log.info("pulling_image")

        client = self._client_factory(self.config)
        layers = self._fetch_layers(client, reference)
        log.info("image_layers_found", count=len(layers))

        file_count = 0
        for index, layer in enumerate(layers):
            if self._write_layer(client, reference, index, layer, dest_dir):
                file_count += 1

        if file_count == 0:
            log.warning("no_files_extracted")
        else:
            log.info("image_pulled", files=file_count)

    def _fetch_layers(self, client: Any, reference: str) -> list[LayerDescriptor]:
        try:
            manifest = client.get_manifest(
                container=reference, allowed_media_type=MANIFEST_MEDIA_TYPES
            )
        except REGISTRY_ERRORS as e:
            raise _registry_error(e, reference) from e

        raw_layers = manifest.get("layers") if isinstance(manifest, dict) else None
        if not isinstance(raw_layers, list):
            raise ProtocolError(f"manifest for {reference} does not list any layers")

        layers = []
        for raw in raw_layers:
            if not isinstance(raw, dict) or "digest" not in raw:
                raise ProtocolError(f"malformed layer descriptor in {reference}: {raw!r}")
            layers.append(
                LayerDescriptor(
                    media_type=str(raw.get("mediaType", "")),
                    digest=str(raw["digest"]),
                    size=int(raw.get("size", 0) or 0),
                    annotations=dict(raw.get("annotations") or {}),
                )
            )
        return layers

    def _write_layer(
        self,
        client: Any,
        reference: str,
        index: int,
        layer: LayerDescriptor,
        dest_dir: Path,
    ) -> bool:
        """Write one layer to disk; return False when the layer is empty."""
        logger.info("layer_media_type", layer=index, media_type=layer.media_type)
        content = self._fetch_blob(client, reference, layer)

        if layer.is_gzip and content:
            try:
                content = gzip.decompress(content)
            except (OSError, EOFError) as e:
                raise ProtocolError(f"layer {index} of {reference} is not valid gzip: {e}") from e

        if not content:
            logger.info("layer_empty_skipped", layer=index)
            return False

        target = dest_dir / layer_filename(index, layer)
        target.write_bytes(content)
        logger.info("layer_saved", layer=index, file=target.name, bytes=len(content))
        return True

    def _fetch_blob(self, client: Any, reference: str, layer: LayerDescriptor) -> bytes:
        try:
            response = client.get_blob(container=reference, digest=layer.digest)
        except REGISTRY_ERRORS as e:
            raise _registry_error(e, reference) from e

        if response.status_code != 200:
            raise _registry_error(
                RuntimeError(f"blob {layer.digest} returned status {response.status_code}"),
                reference,
            )

        content = response.content
        algorithm, _, expected = layer.digest.partition(":")
        if algorithm == "sha256" and hashlib.sha256(content).hexdigest() != expected:
            raise ProtocolError(f"digest mismatch for layer {layer.digest} of {reference}")
        return content


class OrasCopyPuller:
    """Copies the configured reference into the directory with ORAS.

    ORAS downloads layers sequentially, so writes into the destination never
    interleave.
    """

    def __init__(self, config: WatchConfig, client_factory: ClientFactory | None = None):
        self.config = config
        self._client_factory = client_factory or _basic_client

    def pull(self, version: ResolvedVersion, dest_dir: Path) -> None:
        prepare_destination(dest_dir)
        reference = self.config.image_base
        log = logger.bind(reference=reference, dest=str(dest_dir), version=version.identifier)
        log.info("pulling_with_oras")

        client = self._client_factory(self.config)
        try:
            client.pull(target=reference, outdir=str(dest_dir))
        except REGISTRY_ERRORS as e:
            raise _registry_error(e, reference) from e

        log.info("artifact_pulled")
        try:
            files = find_manifest_files(dest_dir)
        except OSError as e:
            log.warning("list_pulled_files_failed", error=str(e))
            return
        log.info("yaml_files_found", count=len(files), files=[str(f) for f in files])


def build_puller(config: WatchConfig, client_factory: ClientFactory | None = None) -> Puller:
    """Pick the pull strategy for the configured provider."""
    if config.provider == Provider.GITHUB:
        return LayerWalkPuller(config, client_factory)
    return OrasCopyPuller(config, client_factory)
