"""Bounded, time-capped execution of external tools and blocking calls."""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, TypeVar

from .errors import ProcessError, ProcessTimeout
from .logging_utils import get_module_logger

logger = get_module_logger("WorkerPool")

T = TypeVar("T")

DEFAULT_PROCESS_TIMEOUT = 10.0
DEFAULT_MAX_CONCURRENCY = 8


@dataclass
class ProcessResult:
    argv: List[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def lines(self) -> List[str]:
        """Non-empty, stripped stdout lines."""
        return [line.strip() for line in self.stdout.splitlines() if line.strip()]


async def _reap(process: asyncio.subprocess.Process) -> None:
    with contextlib.suppress(ProcessLookupError):
        process.kill()
    with contextlib.suppress(Exception):
        await asyncio.wait_for(process.wait(), timeout=2.0)


async def run_process(argv: Sequence[str], timeout: float = DEFAULT_PROCESS_TIMEOUT) -> ProcessResult:
    """Run ``argv`` to completion and capture its output.

    A non-zero exit status is returned, not raised. Raises ProcessError when
    the executable cannot be started and ProcessTimeout when it outlives
    ``timeout`` (the child is killed and reaped first).
    """
    args = [str(arg) for arg in argv]
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except (FileNotFoundError, PermissionError) as exc:
        raise ProcessError(args, str(exc)) from exc

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Process %s exceeded %.1fs, killing pid %s", args[0], timeout, process.pid)
        await _reap(process)
        raise ProcessTimeout(args, timeout) from None
    except asyncio.CancelledError:
        await _reap(process)
        raise

    return ProcessResult(
        argv=args,
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )


class WorkerPool:
    """Shared concurrency limit for process spawns and blocking store I/O.

    Usage:
        pool = WorkerPool(max_concurrency=8, timeout=10.0)
        result = await pool.run(["/usr/bin/defaults", "read", plist, "CFBundleIdentifier"])
        value = await pool.run_blocking(read_row, db_path)
    """

    def __init__(
        self,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        timeout: float = DEFAULT_PROCESS_TIMEOUT,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency = max_concurrency
        self.timeout = timeout
        self._semaphore: Optional[asyncio.Semaphore] = None

    @property
    def semaphore(self) -> asyncio.Semaphore:
        # Created lazily so the pool can be built outside a running loop
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_concurrency)
        return self._semaphore

    async def run(self, argv: Sequence[str], timeout: Optional[float] = None) -> ProcessResult:
        async with self.semaphore:
            return await run_process(argv, timeout if timeout is not None else self.timeout)

    async def run_blocking(self, func: Callable[..., T], *args: Any) -> T:
        async with self.semaphore:
            return await asyncio.to_thread(func, *args)


__all__ = [
    "DEFAULT_PROCESS_TIMEOUT",
    "DEFAULT_MAX_CONCURRENCY",
    "ProcessResult",
    "WorkerPool",
    "run_process",
]
