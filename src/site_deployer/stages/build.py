"""Build stage: produce the static export locally."""

from __future__ import annotations

import os
import re
import subprocess
import time
from pathlib import Path
from typing import Callable, Optional, Union

from ..config import BuildConfig
from ..store.configs import write_bytes_atomic
from ..utils.logging import get_logger
from .base import BuildResult, Clock, Stopwatch

logger = get_logger(__name__)

Runner = Callable[..., "subprocess.CompletedProcess[bytes]"]

_EXPORT_LINE = re.compile(r"""output:\s*['"]export['"]""")
_COMMENTED_EXPORT = re.compile(r"""//\s*output:\s*['"]export['"],?""")
_EXPORT_WITH_TRAILING_COMMENT = re.compile(r"""output:\s*['"]export['"],?\s*//.*""")


def decode_output(data: Union[bytes, str, None], encoding: str = "utf-8") -> str:
    """Decode captured process output; undecodable bytes become U+FFFD."""
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode(encoding, errors="replace")
    return data


def is_static_export_enabled(content: str) -> bool:
    """True when an uncommented `output: 'export'` entry is present."""
    for line in content.splitlines():
        match = _EXPORT_LINE.search(line)
        if match and "//" not in line[: match.start()]:
            return True
    return False


def enable_static_export(content: str) -> str:
    """Uncomment the export entry and drop any trailing comment after it."""
    content = _COMMENTED_EXPORT.sub("output: 'export',", content)
    return _EXPORT_WITH_TRAILING_COMMENT.sub("output: 'export',", content)


class BuildStage:
    """Runs the project's build command with static export switched on.

    The build configuration file is restored byte-for-byte before `run`
    returns whenever it had to be modified.
    """

    def __init__(
        self,
        build: BuildConfig,
        project_dir: Union[str, Path],
        *,
        runner: Runner = subprocess.run,
        clock: Clock = time.perf_counter,
    ) -> None:
        self.build = build
        self.project_dir = Path(project_dir)
        self.runner = runner
        self.clock = clock

    @property
    def config_path(self) -> Path:
        return self.project_dir / self.build.build_config_file

    def run(self, local_dir: str) -> BuildResult:
        watch = Stopwatch(self.clock)

        descriptor = self.project_dir / self.build.project_descriptor
        if not descriptor.is_file():
            return BuildResult(
                success=False,
                error=f"{self.build.project_descriptor} not found in {self.project_dir.resolve()}",
                duration=watch.elapsed(),
            )

        original = self._enable_static_export()
        try:
            result = self._run_build()
        finally:
            restore_error = self._restore(original) if original is not None else None

        if restore_error:
            return BuildResult(success=False, error=restore_error, duration=watch.elapsed())
        if not result.success:
            result.duration = watch.elapsed()
            return result

        output_dir = self.project_dir / local_dir
        if not output_dir.exists():
            return BuildResult(
                success=False,
                error=(
                    f"{local_dir}/ directory was not created. "
                    f"Check that {self.build.build_config_file} has output: 'export'."
                ),
                duration=watch.elapsed(),
            )
        if not output_dir.is_dir():
            return BuildResult(success=False, error=f"{local_dir}/ is not a directory", duration=watch.elapsed())

        duration = watch.elapsed()
        result.duration = duration
        result.output = f"Build successful. Duration: {duration:.1f}s"
        return result

    def _enable_static_export(self) -> Optional[bytes]:
        """Switch the build config to static export.

        Returns the original bytes when the file was rewritten, None otherwise.
        """
        path = self.config_path
        try:
            original = path.read_bytes()
            content = original.decode("utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Could not read %s, building anyway: %s", path.name, exc)
            return None

        if is_static_export_enabled(content):
            return None

        modified = enable_static_export(content)
        if modified == content:
            logger.warning("%s has no output: 'export' entry to enable", path.name)
            return None

        try:
            write_bytes_atomic(path, modified.encode("utf-8"))
        except OSError as exc:
            logger.warning("Could not modify %s, building anyway: %s", path.name, exc)
            return None
        logger.info("   Temporarily enabled static export in %s", path.name)
        return original

    def _restore(self, original: bytes) -> Optional[str]:
        try:
            write_bytes_atomic(self.config_path, original)
        except OSError as exc:
            logger.error("Could not restore %s: %s", self.config_path.name, exc)
            return f"Could not restore {self.config_path.name}: {exc}"
        logger.info("   Restored %s", self.config_path.name)
        return None

    def _run_build(self) -> BuildResult:
        command = self.build.command
        logger.info("   Running `%s` (timeout %ss)", command, self.build.timeout)
        try:
            process = self.runner(
                command,
                shell=True,
                cwd=str(self.project_dir),
                env={**os.environ, **self.build.env},
                capture_output=True,
                timeout=self.build.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            return BuildResult(success=False, error=f"Build timed out after {self.build.timeout}s")
        except OSError as exc:
            return BuildResult(success=False, error=f"Build could not start: {exc}")

        stderr = decode_output(process.stderr).strip()
        if process.returncode != 0:
            detail = stderr or decode_output(process.stdout).strip()[-2000:]
            return BuildResult(success=False, error=f"Build failed (exit code {process.returncode}): {detail}")
        if stderr and "warning" not in stderr.lower():
            logger.error("Build stderr: %s", stderr)
            return BuildResult(success=False, error=f"Build failed: {stderr}")
        return BuildResult(success=True)
