"""Data models for package versions, resolved versions and manifest layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

POLICY_LAYER_MEDIA_TYPE = "application/vnd.cncf.kyverno.policy.layer.v1+yaml"

# Stand-in for versions the API reports without an update time
EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class PackageVersion:
    """One entry of the GitHub packages ``versions`` listing."""

    id: int
    name: str = ""  # Content digest, e.g. sha256:...
    updated_at: datetime = EPOCH
    tags: list[str] = field(default_factory=list)

    @property
    def identifier(self) -> str:
        """First tag when tagged, otherwise a synthesized ``version-id-<id>``."""
        if self.tags:
            return self.tags[0]
        return f"version-id-{self.id}"


@dataclass(frozen=True)
class ResolvedVersion:
    """The currently published version of the watched artifact.

    ``identifier`` is what gets compared and persisted; ``digest`` lets an
    untagged version still be pulled.
    """

    identifier: str
    digest: str = ""
    tagged: bool = True


@dataclass
class LayerDescriptor:
    """A content layer listed in an OCI image manifest."""

    media_type: str
    digest: str
    size: int = 0
    annotations: dict[str, str] = field(default_factory=dict)

    @property
    def is_policy_layer(self) -> bool:
        return self.media_type == POLICY_LAYER_MEDIA_TYPE

    @property
    def is_gzip(self) -> bool:
        return self.media_type.endswith(("+gzip", ".gzip"))
