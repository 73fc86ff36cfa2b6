"""
Post-deployment script runner.

Launches one external process per script, streams its output to the
tracer line by line while it runs, and kills it when it exceeds the
configured timeout.
"""

import asyncio
import logging
import os
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Deque, Iterable, List, Optional, Union

from postdeploy.config.provider import DEFAULT_COMMAND_TIMEOUT
from postdeploy.errors import NonZeroExitError, ScriptTimeoutError

logger = logging.getLogger("postdeploy.scripts")

SCRIPT_EXTENSIONS = (".cmd", ".bat", ".ps1")
POWERSHELL = "PowerShell.exe" if os.name == "nt" else "pwsh"

# Lines kept per stream for diagnostics; output is never buffered in full
OUTPUT_TAIL_LINES = 50
# Longest line forwarded in one piece; longer output is split into pieces of this size
LINE_LIMIT = 1024 * 1024
READ_CHUNK = 64 * 1024


def discover_scripts(directory: Union[str, Path]) -> List[Path]:
    """
    Find post-deployment scripts in a directory.

    Only top-level .cmd, .bat and .ps1 files are eligible. The result is
    ordered lexicographically.
    """
    root = Path(directory)
    if not root.is_dir():
        return []

    scripts = [
        entry
        for entry in root.iterdir()
        if entry.is_file() and entry.suffix.lower() in SCRIPT_EXTENSIONS
    ]
    return sorted(scripts, key=str)


@dataclass(frozen=True)
class ScriptJob:
    """One discovered script and its timeout in seconds."""
    path: Path
    timeout: float = DEFAULT_COMMAND_TIMEOUT

    @property
    def command(self) -> List[str]:
        """Command line used to launch the script."""
        if self.path.suffix.lower() == ".ps1":
            return [POWERSHELL, "-ExecutionPolicy", "RemoteSigned", "-File", str(self.path)]
        return [str(self.path)]


@dataclass
class ProcessResult:
    """Outcome of a script that ran to completion."""
    exit_code: int
    pid: Optional[int]
    process_name: str
    timed_out: bool = False
    stdout_tail: Deque[str] = field(default_factory=lambda: deque(maxlen=OUTPUT_TAIL_LINES))
    stderr_tail: Deque[str] = field(default_factory=lambda: deque(maxlen=OUTPUT_TAIL_LINES))


class ScriptRunner:
    """Runs post-deployment scripts one at a time."""

    def __init__(
        self,
        timeout: float = DEFAULT_COMMAND_TIMEOUT,
        tracer: Optional[logging.Logger] = None,
    ):
        """
        Initialize script runner.

        Args:
            timeout: Wall-clock budget per script in seconds
            tracer: Logger receiving script output and lifecycle events
        """
        self.timeout = timeout
        self.tracer = tracer or logger

    async def run_all(
        self,
        scripts: Iterable[Union[str, Path]],
        tracer: Optional[logging.Logger] = None,
    ) -> List[ProcessResult]:
        """
        Run scripts sequentially in the given order.

        The first failure aborts the remaining scripts and propagates.
        """
        results = []
        for script in scripts:
            results.append(await self.run(script, tracer))
        return results

    async def run(
        self,
        script: Union[str, Path, ScriptJob],
        tracer: Optional[logging.Logger] = None,
    ) -> ProcessResult:
        """
        Run one script to completion.

        Raises:
            ScriptTimeoutError: The script exceeded the timeout and was killed
            NonZeroExitError: The script exited with a non-zero code
        """
        tracer = tracer or self.tracer
        job = script if isinstance(script, ScriptJob) else ScriptJob(Path(script), self.timeout)
        command = job.command

        tracer.info('Run post-deployment: "%s" %s', command[0], " ".join(command[1:]))
        process = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        # Scripts get no input; a closed stdin makes "pause" style prompts return
        process.stdin.close()

        result = ProcessResult(
            exit_code=-1,
            pid=process.pid,
            process_name=Path(command[0]).stem,
        )
        tracer.info("Process %s(%s) started", result.process_name, result.pid)

        readers = [
            asyncio.create_task(self._pump(process.stdout, tracer.info, result.stdout_tail)),
            asyncio.create_task(self._pump(process.stderr, tracer.error, result.stderr_tail)),
        ]

        try:
            await asyncio.wait_for(process.wait(), timeout=job.timeout)
        except asyncio.TimeoutError:
            result.timed_out = True
            self._kill(process, tracer)
            for reader in readers:
                reader.cancel()
            await asyncio.gather(*readers, return_exceptions=True)
            await process.wait()
            raise ScriptTimeoutError(result.process_name, result.pid, job.timeout)

        # Drain whatever output is still buffered in the pipes
        await asyncio.gather(*readers)

        result.exit_code = process.returncode
        if result.exit_code != 0:
            raise NonZeroExitError(result.process_name, result.pid, result.exit_code)

        tracer.info("Process %s(%s) executed successfully.", result.process_name, result.pid)
        return result

    @staticmethod
    def _kill(process: asyncio.subprocess.Process, tracer: logging.Logger) -> None:
        try:
            process.kill()
        except ProcessLookupError:
            # Exited between the timeout firing and the kill
            tracer.debug("Process %s already exited", process.pid)

    @staticmethod
    async def _pump(
        stream: asyncio.StreamReader,
        emit: Callable[..., None],
        tail: Deque[str],
    ) -> None:
        """Forward non-blank lines of a stream as they arrive."""
        pending = b""
        while True:
            chunk = await stream.read(READ_CHUNK)
            if not chunk:
                break
            pending += chunk
            *lines, pending = pending.split(b"\n")
            while len(pending) >= LINE_LIMIT:
                lines.append(pending[:LINE_LIMIT])
                pending = pending[LINE_LIMIT:]
            for raw in lines:
                ScriptRunner._forward(raw, emit, tail)
        if pending:
            ScriptRunner._forward(pending, emit, tail)

    @staticmethod
    def _forward(raw: bytes, emit: Callable[..., None], tail: Deque[str]) -> None:
        line = raw.decode("utf-8", errors="replace").rstrip("\r")
        if line.strip():
            tail.append(line)
            emit("%s", line)
