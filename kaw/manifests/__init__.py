"""Manifest handling — parsing, provenance labels and application."""

from kaw.manifests.annotator import (
    AnnotationReport,
    ManifestAnnotator,
    annotate_directory,
    annotate_file,
)
from kaw.manifests.applier import ApplyReport, KubectlApplier
from kaw.manifests.document import StructuredDocument, parse_documents, serialize_documents

__all__ = [
    "AnnotationReport",
    "ManifestAnnotator",
    "annotate_directory",
    "annotate_file",
    "ApplyReport",
    "KubectlApplier",
    "StructuredDocument",
    "parse_documents",
    "serialize_documents",
]
