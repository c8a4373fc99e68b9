"""
Subprocess execution with a timeout and an output cap.

Commands run without a shell, with a minimal inherited environment. Binaries
are resolved from ``<NAME>_PATH`` overrides (e.g. ``GITLEAKS_PATH``) before
the regular PATH lookup.
"""

import asyncio
import logging
import os
import re
import shutil
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 300
DEFAULT_MAX_OUTPUT_MB = 10

_PASSTHROUGH_ENV = ("PATH", "HOME", "USER", "TMPDIR", "LANG", "LC_ALL")
_TOOL_PATH_OVERRIDES = ("SEMGREP_PATH", "GITLEAKS_PATH", "TRIVY_PATH")


class ExecError(Exception):
    """A command ran but failed."""

    def __init__(
        self,
        message: str,
        stdout: str = "",
        stderr: str = "",
        exit_code: int | None = None,
    ):
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr
        self.exit_code = exit_code


class ToolMissingError(ExecError):
    """The binary could not be found."""

    def __init__(self, tool: str, install_instructions: str = ""):
        super().__init__(f"{tool} not found. {install_instructions}".strip())
        self.tool = tool


class ExecTimeoutError(ExecError):
    """The command exceeded its time limit and was killed."""

    def __init__(self, tool: str, timeout_seconds: float):
        super().__init__(f"{tool} timed out after {timeout_seconds:g} seconds")
        self.tool = tool
        self.timeout_seconds = timeout_seconds


@dataclass
class ExecResult:
    stdout: str
    stderr: str
    exit_code: int


def resolve_binary(name: str) -> str:
    """
    Resolve a binary name to an absolute path.

    Raises:
        ToolMissingError: If the binary is not on PATH
        ValueError: If a ``<NAME>_PATH`` override is not absolute
    """
    if os.path.isabs(name):
        return name

    override_key = re.sub(r"[^A-Z0-9]", "_", name.upper()) + "_PATH"
    override = os.environ.get(override_key)
    if override:
        if not os.path.isabs(override):
            raise ValueError(
                f"Environment override {override_key} must be an absolute path: {override}"
            )
        return override

    found = shutil.which(name)
    if not found:
        raise ToolMissingError(name)
    return found


def _minimal_env() -> dict[str, str]:
    env = {key: os.environ[key] for key in _PASSTHROUGH_ENV if key in os.environ}
    env.update({key: os.environ[key] for key in _TOOL_PATH_OVERRIDES if key in os.environ})
    return env


async def _read_capped(stream: asyncio.StreamReader, limit: int, label: str) -> bytes:
    chunks: list[bytes] = []
    total = 0
    while True:
        chunk = await stream.read(65536)
        if not chunk:
            break
        total += len(chunk)
        if total > limit:
            raise ExecError(f"{label} exceeded the {limit // (1024 * 1024)}MB output limit")
        chunks.append(chunk)
    return b"".join(chunks)


async def run_with_limits(
    file: str,
    args: list[str],
    cwd: Path | str | None = None,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    max_output_mb: int = DEFAULT_MAX_OUTPUT_MB,
    env: dict[str, str] | None = None,
) -> ExecResult:
    """
    Run a binary with arguments (no shell), bounded in time and output size.

    Raises:
        ToolMissingError: If the binary cannot be resolved
        ExecTimeoutError: If the command runs past ``timeout_seconds``
        ExecError: On a non-zero exit code or oversized output; carries the
            captured stdout/stderr
    """
    resolved = resolve_binary(file)
    limit = max_output_mb * 1024 * 1024

    try:
        process = await asyncio.create_subprocess_exec(
            resolved,
            *args,
            cwd=str(cwd) if cwd else None,
            env=env if env is not None else _minimal_env(),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise ToolMissingError(file) from e

    async def _communicate() -> tuple[bytes, bytes]:
        stdout, stderr = await asyncio.gather(
            _read_capped(process.stdout, limit, f"{file} stdout"),
            _read_capped(process.stderr, limit, f"{file} stderr"),
        )
        await process.wait()
        return stdout, stderr

    try:
        raw_stdout, raw_stderr = await asyncio.wait_for(_communicate(), timeout_seconds)
    except TimeoutError as e:
        process.kill()
        await process.wait()
        raise ExecTimeoutError(file, timeout_seconds) from e
    except ExecError:
        process.kill()
        await process.wait()
        raise

    stdout = raw_stdout.decode("utf-8", errors="replace")
    stderr = raw_stderr.decode("utf-8", errors="replace")
    exit_code = process.returncode or 0

    if exit_code != 0:
        raise ExecError(
            f"Execution of {file} failed with exit code {exit_code}",
            stdout=stdout,
            stderr=stderr,
            exit_code=exit_code,
        )

    logger.debug(f"{file} finished ({len(stdout)} bytes stdout)")
    return ExecResult(stdout=stdout, stderr=stderr, exit_code=exit_code)
