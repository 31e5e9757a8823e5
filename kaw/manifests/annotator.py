"""Provenance labelling — mark pulled manifests as watcher-managed.

Every manifest gets two labels before it is applied:
- ``managed-by: kyverno-watcher`` identifies the agent that owns the object
- ``policy-version: <version>`` records which artifact version it came from

Any other label, and every other field of the document, is left alone.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import structlog

from kaw.errors import ParseError
from kaw.manifests.document import (
    StructuredDocument,
    parse_documents,
    serialize_documents,
)
from kaw.utils.file_scanner import find_manifest_files

logger = structlog.get_logger(__name__)

MANAGED_BY_LABEL = "managed-by"
MANAGED_BY_VALUE = "kyverno-watcher"
VERSION_LABEL = "policy-version"


@dataclass
class AnnotationReport:
    """Outcome of labelling a directory."""

    annotated: list[str] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)  # path -> reason

    @property
    def total(self) -> int:
        return len(self.annotated) + len(self.skipped)


def add_labels(document: StructuredDocument, version: str) -> StructuredDocument:
    """Set the provenance labels on *document* in place and return it."""
    if document.metadata.labels is None:
        document.metadata.labels = {}
    document.metadata.labels[MANAGED_BY_LABEL] = MANAGED_BY_VALUE
    document.metadata.labels[VERSION_LABEL] = version
    return document


def add_labels_to_yaml(text: str, version: str, source: str = "") -> str:
    """Label every document in a YAML stream and return the new text.

    Raises:
        ParseError: If the text is not valid manifest YAML.
    """
    documents = parse_documents(text, source)
    for doc in documents:
        add_labels(doc, version)
    return serialize_documents(documents)


def annotate_file(path: str | Path, version: str) -> int:
    """Rewrite a manifest file with provenance labels added.

    Returns the number of documents labelled.

    Raises:
        ParseError: If the file is not valid manifest YAML.
        OSError: If the file cannot be read or written.
    """
    path = Path(path)
    documents = parse_documents(path.read_text(encoding="utf-8"), source=str(path))
    for doc in documents:
        add_labels(doc, version)
    path.write_text(serialize_documents(documents), encoding="utf-8")
    return len(documents)


def annotate_directory(directory: str | Path, version: str) -> AnnotationReport:
    """Annotate all YAML files under *directory*.

    A file that fails to parse or to be rewritten is logged and skipped;
    the remaining files are still processed.

    Raises:
        OSError: If the directory itself cannot be walked.
    """
    report = AnnotationReport()
    for file_path in find_manifest_files(Path(directory)):
        try:
            annotate_file(file_path, version)
        except (ParseError, OSError, UnicodeDecodeError) as e:
            logger.warning("add_labels_failed", file=str(file_path), version=version, error=str(e))
            report.skipped[str(file_path)] = str(e)
            continue
        report.annotated.append(str(file_path))

    logger.info(
        "manifests_labelled",
        directory=str(directory),
        version=version,
        annotated=len(report.annotated),
        skipped=len(report.skipped),
    )
    return report


class ManifestAnnotator:
    """Labels every manifest in a pulled artifact directory."""

    def annotate(self, directory: str | Path, version: str) -> AnnotationReport:
        return annotate_directory(directory, version)
