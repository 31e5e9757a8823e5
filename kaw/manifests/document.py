"""Manifest documents — parse and serialize Kubernetes-style YAML.

A ``StructuredDocument`` exposes the fields the watcher touches (apiVersion,
kind, metadata name/namespace/labels) and carries everything else through
untouched: the ``spec`` payload, other metadata keys such as annotations,
and any extra top-level keys.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import yaml

from kaw.errors import ParseError


@dataclass
class DocumentMetadata:
    name: str = ""
    namespace: str = ""
    labels: dict[str, str] | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class StructuredDocument:
    """One manifest: apiVersion, kind, metadata and an opaque spec."""

    api_version: str
    kind: str
    metadata: DocumentMetadata = field(default_factory=DocumentMetadata)
    spec: dict[str, Any] | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any, source: str = "") -> StructuredDocument:
        """Build a document from a parsed YAML mapping.

        Raises:
            ParseError: If the data is not a manifest-shaped mapping.
        """
        if not isinstance(data, dict):
            raise ParseError(
                f"expected a mapping at document root, got {type(data).__name__}", source
            )
        if not data.get("apiVersion") or not data.get("kind"):
            raise ParseError("document is missing apiVersion or kind", source)

        raw_meta = data.get("metadata")
        if raw_meta is None:
            raw_meta = {}
        if not isinstance(raw_meta, dict):
            raise ParseError("metadata must be a mapping", source)

        labels = raw_meta.get("labels")
        if labels is not None:
            if not isinstance(labels, dict):
                raise ParseError("metadata.labels must be a mapping", source)
            for key, value in labels.items():
                if not isinstance(value, str):
                    raise ParseError(
                        f"label {key!r} has a non-string value: {value!r}", source
                    )
            labels = {str(k): v for k, v in labels.items()}

        spec = data.get("spec")
        if spec is not None and not isinstance(spec, dict):
            raise ParseError("spec must be a mapping", source)

        metadata = DocumentMetadata(
            name=str(raw_meta.get("name") or ""),
            namespace=str(raw_meta.get("namespace") or ""),
            labels=labels,
            extra={
                k: v for k, v in raw_meta.items() if k not in ("name", "namespace", "labels")
            },
        )
        return cls(
            api_version=str(data["apiVersion"]),
            kind=str(data["kind"]),
            metadata=metadata,
            spec=spec,
            extra={
                k: v
                for k, v in data.items()
                if k not in ("apiVersion", "kind", "metadata", "spec")
            },
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the document with its native lowerCamel field names."""
        meta: dict[str, Any] = {"name": self.metadata.name}
        if self.metadata.namespace:
            meta["namespace"] = self.metadata.namespace
        if self.metadata.labels:
            meta["labels"] = dict(self.metadata.labels)
        meta.update(self.metadata.extra)

        out: dict[str, Any] = {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": meta,
        }
        if self.spec is not None:
            out["spec"] = self.spec
        out.update(self.extra)
        return out


def parse_documents(text: str, source: str = "") -> list[StructuredDocument]:
    """Parse every document in a YAML stream; empty documents are dropped.

    Raises:
        ParseError: On invalid YAML, an empty stream, or a document that is
            not manifest-shaped.
    """
    try:
        raw_docs = [d for d in yaml.safe_load_all(text) if d is not None]
    except yaml.YAMLError as e:
        raise ParseError(f"unmarshaling YAML: {e}", source) from e

    if not raw_docs:
        raise ParseError("no documents found", source)
    return [StructuredDocument.from_dict(d, source) for d in raw_docs]


def serialize_documents(documents: list[StructuredDocument]) -> str:
    """Render documents back to YAML, separated by ``---`` when several."""
    return yaml.safe_dump_all(
        [d.to_dict() for d in documents],
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
    )
