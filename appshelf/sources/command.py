"""
Subprocess plumbing shared by the command-line package sources.

This module wraps ``subprocess.run`` with the timeouts, text decoding and
console-window suppression every package manager call needs, and maps
failures onto ``SourceError``.
"""

import logging
import shlex
import subprocess
from typing import Callable, Dict, List, Optional, Sequence

from appshelf.config import SourceSettings, Timeouts
from appshelf.errors import SourceError
from appshelf.models import ApplicationRecord
from appshelf.platform import hidden_window_kwargs
from appshelf.sources import BaseSource

logger = logging.getLogger("appshelf.sources")

Parser = Callable[[str], List[ApplicationRecord]]


class CommandSource(BaseSource):
    """A package source backed by an external command-line tool."""

    #: Executable used when the configuration does not name one
    default_binary: str = ""
    #: Built-in argument templates keyed by operation
    default_commands: Dict[str, Sequence[str]] = {}

    def __init__(
        self,
        settings: Optional[SourceSettings] = None,
        timeouts: Optional[Timeouts] = None,
    ):
        """
        Initialize the source.

        Args:
            settings: Binary and command overrides from the configuration file
            timeouts: Probe, query and install time budgets
        """
        self.settings = settings or SourceSettings()
        self.timeouts = timeouts or Timeouts()
        self.binary = self.settings.binary or self.default_binary

    def _command(self, operation: str, **values: str) -> List[str]:
        template = self.settings.commands.get(operation) or self.default_commands[
            operation
        ]
        return [self.binary] + [arg.format(**values) for arg in template]

    def _run_command(self, cmd: List[str], timeout: float) -> str:
        """
        Run a package manager command and return its stdout.

        Args:
            cmd: Full command line, binary first
            timeout: Seconds before the child is killed

        Raises:
            SourceError: On a missing binary, timeout or non-zero exit
        """
        cmd_str = " ".join(shlex.quote(str(arg)) for arg in cmd)
        logger.debug(f"Running command: {cmd_str}")

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
                check=False,
                **hidden_window_kwargs(),
            )
        except FileNotFoundError as e:
            raise SourceError(f"`{self.binary}` command not found") from e
        except subprocess.TimeoutExpired as e:
            raise SourceError(
                f"{self.name} timed out after {timeout:g}s: {cmd_str}"
            ) from e
        except OSError as e:
            raise SourceError(f"{self.name} could not be started: {e}") from e

        if result.returncode != 0:
            logger.debug(f"Return code: {result.returncode}")
            logger.debug(f"Stderr: {result.stderr}")
            raise SourceError(
                f"{self.name} command failed with exit code "
                f"{result.returncode}: {cmd_str}"
            )
        return result.stdout or ""

    def is_available(self) -> bool:
        try:
            self._run_command(self._command("probe"), self.timeouts.probe)
            return True
        except SourceError as e:
            logger.debug(f"{self.name} is not available: {e}")
            return False

    def _query(self, operation: str, parser: Parser, **values: str) -> List[ApplicationRecord]:
        output = self._run_command(
            self._command(operation, **values), self.timeouts.query
        )
        apps = parser(output)
        logger.debug(f"{self.name} {operation} returned {len(apps)} records")
        return apps

    def install(self, package_id: str) -> None:
        logger.info(f"Installing {package_id} with {self.name}...")
        self._run_command(
            self._command("install", package_id=package_id), self.timeouts.install
        )
        logger.info(f"Installed {package_id} with {self.name}")
