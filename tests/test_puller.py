"""Tests for the layer-walk and ORAS copy pull strategies."""

import gzip
import hashlib
import json
import tempfile
from pathlib import Path

import pytest
import requests
from oras.client import OrasClient

from kaw.config import load_config
from kaw.errors import AuthError, NotFoundError, ProtocolError
from kaw.registry.models import POLICY_LAYER_MEDIA_TYPE, ResolvedVersion
from kaw.registry.puller import (
    LayerWalkPuller,
    OrasCopyPuller,
    _basic_client,
    _token_client,
    build_puller,
    prepare_destination,
)

POLICY_YAML = b"apiVersion: kyverno.io/v1\nkind: ClusterPolicy\nmetadata:\n  name: p\n"


def _digest(content: bytes) -> str:
    return "sha256:" + hashlib.sha256(content).hexdigest()


class FakeResponse:
    def __init__(self, content: bytes, status_code: int = 200):
        self.content = content
        self.status_code = status_code


class FakeOrasClient:
    """Mimics the subset of ``oras.provider.Registry`` the pullers call."""

    def __init__(self, manifest=None, blobs=None, pull_files=None, pull_error=None):
        self.manifest = manifest
        self.blobs = blobs or {}
        self.pull_files = pull_files or {}
        self.pull_error = pull_error
        self.manifest_requests = []
        self.pull_calls = []

    def login(self, username, password, hostname=None, **kwargs):
        return {"Status": "Login Succeeded"}

    def get_manifest(self, container, allowed_media_type=None):
        self.manifest_requests.append(container)
        if isinstance(self.manifest, Exception):
            raise self.manifest
        return self.manifest

    def get_blob(self, container, digest, stream=False, head=False):
        content = self.blobs.get(digest)
        if content is None:
            return FakeResponse(b"", status_code=404)
        return FakeResponse(content)

    def pull(self, target, outdir):
        self.pull_calls.append((target, outdir))
        if self.pull_error:
            raise self.pull_error
        written = []
        for name, content in self.pull_files.items():
            path = Path(outdir) / name
            path.write_bytes(content)
            written.append(str(path))
        return written


def _github_config(image_base="ghcr.io/myoung34/kyverno-test/policies"):
    return load_config({"IMAGE_BASE": image_base, "GITHUB_TOKEN": "ghp_token"})


def _artifactory_config():
    return load_config(
        {
            "PROVIDER": "artifactory",
            "IMAGE_BASE": "art.example.com/docker-local/policies:v1.2.0",
            "ARTIFACTORY_USERNAME": "deployer",
            "ARTIFACTORY_PASSWORD": "s3cret",
        }
    )


def _layer(content: bytes, media_type: str) -> dict:
    return {"mediaType": media_type, "digest": _digest(content), "size": len(content)}


def _layer_walk(layers, blobs, **kwargs):
    client = FakeOrasClient(manifest={"schemaVersion": 2, "layers": layers}, blobs=blobs)
    puller = LayerWalkPuller(_github_config(**kwargs), client_factory=lambda config: client)
    return puller, client


# --- Destination handling ---


def test_prepare_destination_clears_stale_files():
    with tempfile.TemporaryDirectory() as tmpdir:
        dest = Path(tmpdir) / "image-v1"
        dest.mkdir()
        (dest / "stale.yaml").write_text("old")
        prepare_destination(dest)
        assert dest.is_dir()
        assert list(dest.iterdir()) == []


def test_prepare_destination_creates_parents():
    with tempfile.TemporaryDirectory() as tmpdir:
        dest = Path(tmpdir) / "work" / "image-v1"
        prepare_destination(dest)
        assert dest.is_dir()


# --- Layer walk ---


def test_layer_walk_names_files_by_media_type():
    generic = b"apiVersion: v1\nkind: ConfigMap\nmetadata:\n  name: c\n"
    layers = [
        _layer(generic, "application/vnd.oci.image.layer.v1.tar"),
        _layer(POLICY_YAML, POLICY_LAYER_MEDIA_TYPE),
    ]
    blobs = {_digest(generic): generic, _digest(POLICY_YAML): POLICY_YAML}
    puller, client = _layer_walk(layers, blobs)

    with tempfile.TemporaryDirectory() as tmpdir:
        dest = Path(tmpdir) / "image-v1"
        puller.pull(ResolvedVersion("v1.2.0"), dest)

        assert sorted(p.name for p in dest.iterdir()) == ["layer-0.yaml", "policy-1.yaml"]
        assert (dest / "policy-1.yaml").read_bytes() == POLICY_YAML
    assert client.manifest_requests == ["ghcr.io/myoung34/kyverno-test/policies:v1.2.0"]


def test_layer_walk_skips_empty_layers():
    layers = [_layer(b"", POLICY_LAYER_MEDIA_TYPE), _layer(POLICY_YAML, POLICY_LAYER_MEDIA_TYPE)]
    blobs = {_digest(b""): b"", _digest(POLICY_YAML): POLICY_YAML}
    puller, _ = _layer_walk(layers, blobs)

    with tempfile.TemporaryDirectory() as tmpdir:
        dest = Path(tmpdir) / "image"
        puller.pull(ResolvedVersion("v1"), dest)
        assert [p.name for p in dest.iterdir()] == ["policy-1.yaml"]


def test_layer_walk_with_no_content_is_not_an_error():
    puller, _ = _layer_walk([], {})
    with tempfile.TemporaryDirectory() as tmpdir:
        dest = Path(tmpdir) / "image"
        puller.pull(ResolvedVersion("v1"), dest)
        assert dest.is_dir()
        assert list(dest.iterdir()) == []


def test_layer_walk_decompresses_gzip_layers():
    compressed = gzip.compress(POLICY_YAML)
    layers = [_layer(compressed, "application/vnd.oci.image.layer.v1.tar+gzip")]
    puller, _ = _layer_walk(layers, {_digest(compressed): compressed})

    with tempfile.TemporaryDirectory() as tmpdir:
        dest = Path(tmpdir) / "image"
        puller.pull(ResolvedVersion("v1"), dest)
        assert (dest / "layer-0.yaml").read_bytes() == POLICY_YAML


def test_layer_walk_rejects_digest_mismatch():
    layers = [_layer(POLICY_YAML, POLICY_LAYER_MEDIA_TYPE)]
    puller, _ = _layer_walk(layers, {_digest(POLICY_YAML): b"tampered"})
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(ProtocolError, match="digest mismatch"):
            puller.pull(ResolvedVersion("v1"), Path(tmpdir) / "image")


def test_layer_walk_missing_blob():
    layers = [_layer(POLICY_YAML, POLICY_LAYER_MEDIA_TYPE)]
    puller, _ = _layer_walk(layers, {})
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(ProtocolError):
            puller.pull(ResolvedVersion("v1"), Path(tmpdir) / "image")


def test_layer_walk_pulls_untagged_versions_by_digest():
    digest = "sha256:" + "b" * 64
    puller, client = _layer_walk([], {})
    with tempfile.TemporaryDirectory() as tmpdir:
        puller.pull(
            ResolvedVersion("version-id-42", digest=digest, tagged=False), Path(tmpdir) / "image"
        )
    assert client.manifest_requests == [f"ghcr.io/myoung34/kyverno-test/policies@{digest}"]


def test_layer_walk_ignores_configured_tag():
    puller, client = _layer_walk([], {}, image_base="ghcr.io/o/pkg:old")
    with tempfile.TemporaryDirectory() as tmpdir:
        puller.pull(ResolvedVersion("v2"), Path(tmpdir) / "image")
    assert client.manifest_requests == ["ghcr.io/o/pkg:v2"]


def test_layer_walk_manifest_not_found():
    client = FakeOrasClient(manifest=ValueError("Issue with GET: manifest unknown"))
    puller = LayerWalkPuller(_github_config(), client_factory=lambda config: client)
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(NotFoundError):
            puller.pull(ResolvedVersion("v9"), Path(tmpdir) / "image")


def test_layer_walk_transport_failure_is_protocol_error():
    client = FakeOrasClient(manifest=requests.exceptions.ConnectionError("connection refused"))
    puller = LayerWalkPuller(_github_config(), client_factory=lambda config: client)
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(ProtocolError):
            puller.pull(ResolvedVersion("v1"), Path(tmpdir) / "image")


def test_layer_walk_does_not_mask_programming_errors():
    client = FakeOrasClient(manifest=AttributeError("'Registry' object has no attribute 'x'"))
    puller = LayerWalkPuller(_github_config(), client_factory=lambda config: client)
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(AttributeError):
            puller.pull(ResolvedVersion("v1"), Path(tmpdir) / "image")


def test_layer_walk_index_manifest_is_protocol_error():
    client = FakeOrasClient(manifest={"schemaVersion": 2, "manifests": []})
    puller = LayerWalkPuller(_github_config(), client_factory=lambda config: client)
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(ProtocolError):
            puller.pull(ResolvedVersion("v1"), Path(tmpdir) / "image")


# --- Layer walk against the real oras client ---


def _http_response(status_code: int, content: bytes) -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    response._content = content
    response.headers["Content-Type"] = "application/octet-stream"
    return response


def test_layer_walk_with_default_client(monkeypatch):
    config_blob = b"{}"
    manifest = {
        "schemaVersion": 2,
        "mediaType": "application/vnd.oci.image.manifest.v1+json",
        "config": {
            "mediaType": "application/vnd.oci.image.config.v1+json",
            "digest": _digest(config_blob),
            "size": len(config_blob),
        },
        "layers": [_layer(POLICY_YAML, POLICY_LAYER_MEDIA_TYPE)],
    }
    requested = []

    def fake_request(self, method, url, **kwargs):
        requested.append((method, url))
        if "/manifests/" in url:
            return _http_response(200, json.dumps(manifest).encode())
        if url.endswith(_digest(POLICY_YAML)):
            return _http_response(200, POLICY_YAML)
        return _http_response(500, b"")

    def fail_login(self, *args, **kwargs):
        raise AssertionError("login must not be called")

    monkeypatch.setattr(requests.Session, "request", fake_request)
    monkeypatch.setattr(OrasClient, "login", fail_login)

    puller = LayerWalkPuller(_github_config())
    with tempfile.TemporaryDirectory() as tmpdir:
        dest = Path(tmpdir) / "image-v1"
        puller.pull(ResolvedVersion("v1"), dest)
        assert (dest / "policy-0.yaml").read_bytes() == POLICY_YAML

    assert any("/v2/myoung34/kyverno-test/policies/manifests/v1" in url for _, url in requested)


# --- ORAS copy ---


def test_oras_copy_pulls_configured_reference():
    client = FakeOrasClient(pull_files={"policy.yaml": POLICY_YAML, "README.md": b"docs"})
    puller = OrasCopyPuller(_artifactory_config(), client_factory=lambda config: client)

    with tempfile.TemporaryDirectory() as tmpdir:
        dest = Path(tmpdir) / "image-v1.2.0"
        dest.mkdir()
        (dest / "stale.yaml").write_text("old")

        puller.pull(ResolvedVersion("v1.2.0"), dest)

        assert sorted(p.name for p in dest.iterdir()) == ["README.md", "policy.yaml"]
        assert client.pull_calls == [("art.example.com/docker-local/policies:v1.2.0", str(dest))]


def test_oras_copy_maps_auth_failures():
    client = FakeOrasClient(pull_error=ValueError("Issue with GET: 401 Unauthorized"))
    puller = OrasCopyPuller(_artifactory_config(), client_factory=lambda config: client)
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(AuthError):
            puller.pull(ResolvedVersion("v1.2.0"), Path(tmpdir) / "image")


def test_oras_copy_maps_transport_failures():
    client = FakeOrasClient(pull_error=requests.exceptions.ConnectionError("connection reset"))
    puller = OrasCopyPuller(_artifactory_config(), client_factory=lambda config: client)
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(ProtocolError):
            puller.pull(ResolvedVersion("v1.2.0"), Path(tmpdir) / "image")


def test_oras_copy_does_not_mask_programming_errors():
    client = FakeOrasClient(pull_error=TypeError("pull() got an unexpected keyword argument"))
    puller = OrasCopyPuller(_artifactory_config(), client_factory=lambda config: client)
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(TypeError):
            puller.pull(ResolvedVersion("v1.2.0"), Path(tmpdir) / "image")


def test_default_clients_do_not_log_in(monkeypatch):
    def fail_login(self, *args, **kwargs):
        raise AssertionError("login must not be called")

    monkeypatch.setattr(OrasClient, "login", fail_login)
    assert isinstance(_basic_client(_artifactory_config()), OrasClient)
    assert isinstance(_token_client(_github_config()), OrasClient)


def test_build_puller_by_provider():
    assert isinstance(build_puller(_github_config()), LayerWalkPuller)
    assert isinstance(build_puller(_artifactory_config()), OrasCopyPuller)
