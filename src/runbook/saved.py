"""Saved copies of executed scripts and their output."""

import logging
import os
import re
from datetime import datetime
from pathlib import Path

from .config import AssetConfig
from .runner import CommandResult

logger = logging.getLogger(__name__)

TIME_FORMAT = "%Y-%m-%d-%H-%M-%S"
DEFAULT_PREFIX = "runbook"

# Path separators and drive colons in document names
_UNSAFE_CHARACTERS = re.compile(r"[/:]")


def asset_name(
    document: str,
    block: str,
    time: datetime,
    prefix: str = DEFAULT_PREFIX,
    extension: str = ".sh",
) -> str:
    """Build a saved asset file name.

    >>> asset_name("docs/a.md", "build", datetime(2024, 1, 2, 3, 4, 5))
    'runbook_2024-01-02-03-04-05_docs_a.md_,_build.sh'
    """
    document_part = _UNSAFE_CHARACTERS.sub("_", document)
    return "_".join([prefix, time.strftime(TIME_FORMAT), document_part, ",", block]) + extension


def script_name(document: str, block: str, time: datetime, prefix: str = DEFAULT_PREFIX) -> str:
    return asset_name(document, block, time, prefix, ".sh")


def output_name(document: str, block: str, time: datetime, prefix: str = DEFAULT_PREFIX) -> str:
    return asset_name(document, block, time, prefix, ".out.txt")


def _write_atomic(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(path.name + ".tmp")
    temp_path.write_text(content)
    os.replace(temp_path, path)


class AssetWriter:
    """Write scripts and output logs as configured in `[assets]`."""

    def __init__(self, config: AssetConfig, shell: str = "bash", prefix: str = DEFAULT_PREFIX) -> None:
        self.config = config
        self.shell = shell
        self.prefix = prefix

    def save(
        self,
        document: str,
        block: str,
        script: str,
        result: CommandResult,
        time: datetime | None = None,
    ) -> list[Path]:
        """Save whatever is enabled. Returns the paths written.

        Write failures are logged and skipped.
        """
        time = time or datetime.now()
        written = []

        if self.config.executed_script:
            path = self.config.script_directory / script_name(document, block, time, self.prefix)
            content = (
                f"#!/usr/bin/env {self.shell}\n"
                f"# file_name: {document}\n"
                f"# block_name: {block}\n"
                f"# time: {time.isoformat(sep=' ', timespec='seconds')}\n"
                f"{script}\n"
            )
            if self._write(path, content, mode=0o755):
                written.append(path)

        if self.config.execution_output:
            path = self.config.output_directory / output_name(document, block, time, self.prefix)
            lines = ["-STDOUT-"] + result.stdout.splitlines()
            lines += ["-STDERR-"] + result.stderr.splitlines()
            lines.append(f"-EXIT- {result.exit_code}")
            if result.error:
                lines.append(f"-ERROR- {result.error}")
            if self._write(path, "\n".join(lines) + "\n"):
                written.append(path)

        return written

    def _write(self, path: Path, content: str, mode: int | None = None) -> bool:
        try:
            _write_atomic(path, content)
            if mode is not None:
                path.chmod(mode)
        except OSError as e:
            logger.warning("Failed to save %s: %s", path, e)
            return False
        logger.info("Saved %s", path)
        return True
