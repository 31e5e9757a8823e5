"""Tests for best-effort manifest application."""

import sys
import tempfile
from pathlib import Path

import pytest

from kaw.manifests.applier import COMMAND_NOT_FOUND, KubectlApplier, run_command


class RecordingRunner:
    """Stands in for kubectl, returning a scripted exit status per file name."""

    def __init__(self, exit_codes: dict[str, int] | None = None):
        self.exit_codes = exit_codes or {}
        self.calls: list[list[str]] = []

    def __call__(self, command: list[str]) -> int:
        self.calls.append(command)
        return self.exit_codes.get(Path(command[-1]).name, 0)


def _write_manifests(root: Path, *names: str) -> None:
    for name in names:
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("apiVersion: v1\nkind: ConfigMap\nmetadata:\n  name: x\n")


def test_applies_each_manifest_once():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _write_manifests(root, "layer-0.yaml", "policy-1.yaml", "nested/extra.yml")
        (root / "README.md").write_text("not a manifest")

        runner = RecordingRunner()
        report = KubectlApplier(runner=runner).apply(root)

        assert len(runner.calls) == 3
        for call in runner.calls:
            assert call[:3] == ["kubectl", "apply", "-f"]
            assert len(call) == 4
        assert len(report.succeeded) == 3
        assert report.failed == []


def test_failure_does_not_stop_other_files():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _write_manifests(root, "a.yaml", "b.yaml")

        runner = RecordingRunner({"a.yaml": 1})
        report = KubectlApplier(runner=runner).apply(root)

        assert [Path(c[-1]).name for c in runner.calls] == ["a.yaml", "b.yaml"]
        assert [Path(p).name for p in report.failed] == ["a.yaml"]
        assert [Path(p).name for p in report.succeeded] == ["b.yaml"]


def test_empty_directory_is_a_no_op():
    with tempfile.TemporaryDirectory() as tmpdir:
        runner = RecordingRunner()
        report = KubectlApplier(runner=runner).apply(Path(tmpdir))
        assert runner.calls == []
        assert report.results == {}


def test_missing_directory_raises():
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(OSError):
            KubectlApplier(runner=RecordingRunner()).apply(Path(tmpdir) / "vanished")


def test_custom_apply_command():
    applier = KubectlApplier(command="/usr/local/bin/kubectl")
    assert applier.build_command(Path("/tmp/x.yaml")) == [
        "/usr/local/bin/kubectl",
        "apply",
        "-f",
        "/tmp/x.yaml",
    ]


def test_run_command_returns_exit_status():
    assert run_command([sys.executable, "-c", "raise SystemExit(3)"]) == 3
    assert run_command([sys.executable, "-c", "pass"]) == 0


def test_run_command_missing_binary():
    assert run_command(["kaw-no-such-binary-xyz", "apply", "-f", "x.yaml"]) == COMMAND_NOT_FOUND
