"""Pluggable source formatting pass applied to generated files"""

import logging
import shutil
import subprocess
from typing import Callable, Optional, Sequence

from .errors import OutputError

logger = logging.getLogger(__name__)

# (file name, unformatted source) -> formatted source
Formatter = Callable[[str, str], str]


def identity(filename: str, source: str) -> str:
    return source


class ExternalFormatter:
    """Pipes source through a command such as ``rustfmt`` or ``prettier``.

    Only files whose suffix is in ``suffixes`` are formatted; a failing
    command aborts generation.
    """

    def __init__(self, command: Sequence[str], suffixes: Sequence[str], timeout: Optional[float] = 60):
        self.command = list(command)
        self.suffixes = tuple(suffixes)
        self.timeout = timeout

    def __call__(self, filename: str, source: str) -> str:
        if not filename.endswith(self.suffixes):
            return source
        if shutil.which(self.command[0]) is None:
            raise OutputError(f"Formatter not found: {self.command[0]}")

        command = [arg.replace("{filename}", filename) for arg in self.command]
        logger.debug("formatting %s with %s", filename, command[0])
        try:
            proc = subprocess.run(
                command,
                input=source,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            raise OutputError(f"{command[0]} failed on {filename}: {e.stderr.strip()}") from e
        except subprocess.TimeoutExpired as e:
            raise OutputError(f"{command[0]} timed out on {filename}") from e
        return proc.stdout


def rustfmt(edition: str = "2018") -> ExternalFormatter:
    return ExternalFormatter(["rustfmt", "--edition", edition, "--emit", "stdout"], [".rs"])


def prettier() -> ExternalFormatter:
    return ExternalFormatter(["prettier", "--stdin-filepath", "{filename}"], [".ts"])


def chain(*formatters: Formatter) -> Formatter:
    def run(filename: str, source: str) -> str:
        for formatter in formatters:
            source = formatter(filename, source)
        return source
    return run
