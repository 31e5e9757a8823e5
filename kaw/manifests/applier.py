"""Hand each manifest file to kubectl.

Application is best effort: a file rejected by the apply tool is logged and
the remaining files are still applied.
"""

from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

import structlog

from kaw.utils.file_scanner import find_manifest_files

logger = structlog.get_logger(__name__)

# Exit status reported when the apply tool itself cannot be started
COMMAND_NOT_FOUND = 127

CommandRunner = Callable[[list[str]], int]


def run_command(command: list[str]) -> int:
    """Run *command* with the watcher's own stdout/stderr; return its exit status."""
    try:
        return subprocess.run(command, check=False).returncode
    except FileNotFoundError:
        logger.error("apply_tool_not_found", command=command[0])
        return COMMAND_NOT_FOUND


@dataclass
class ApplyReport:
    """Per-file exit statuses from one apply pass."""

    results: dict[str, int] = field(default_factory=dict)

    @property
    def failed(self) -> list[str]:
        return [path for path, code in self.results.items() if code != 0]

    @property
    def succeeded(self) -> list[str]:
        return [path for path, code in self.results.items() if code == 0]


class KubectlApplier:
    """Runs ``<command> apply -f <file>`` once per manifest file."""

    def __init__(self, command: str = "kubectl", runner: CommandRunner | None = None):
        self.command = command
        self._runner = runner or run_command

    def build_command(self, file_path: Path) -> list[str]:
        return [self.command, "apply", "-f", str(file_path)]

    def apply(self, directory: str | Path) -> ApplyReport:
        """Apply every YAML file under *directory*.

        Non-zero exit statuses are recorded in the report and logged, never
        raised.

        Raises:
            OSError: If the directory cannot be enumerated.
        """
        report = ApplyReport()
        files = find_manifest_files(Path(directory))
        if not files:
            logger.info("no_manifests_found", directory=str(directory))
            return report

        logger.info("applying_manifests", directory=str(directory), count=len(files))
        for file_path in files:
            command = self.build_command(file_path)
            logger.info("apply_manifest", command=" ".join(command))
            exit_code = self._runner(command)
            report.results[str(file_path)] = exit_code
            if exit_code != 0:
                logger.warning("apply_failed", file=str(file_path), exit_code=exit_code)

        return report
