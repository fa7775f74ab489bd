from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence

from prove.core.errors import ToolInvocationError


logger = logging.getLogger(__name__)

# Tail of captured output kept in check details.
OUTPUT_TAIL_CHARS = 4000


@dataclass(frozen=True)
class CommandOutcome:
    argv: tuple[str, ...]
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def tail(self) -> dict[str, str]:
        return {
            "stdout_tail": self.stdout[-OUTPUT_TAIL_CHARS:],
            "stderr_tail": self.stderr[-OUTPUT_TAIL_CHARS:],
        }


def tool_env(extra: Mapping[str, str] | None = None) -> dict[str, str]:
    env = dict(os.environ)
    # Deterministic parsing: avoid localized output.
    env.setdefault("LANG", "C")
    env.setdefault("LC_ALL", "C")
    if extra:
        env.update(extra)
    return env


async def run_command(
    argv: Sequence[str],
    *,
    cwd: Path,
    env: Mapping[str, str] | None = None,
) -> CommandOutcome:
    """Run argv without a shell and capture its output.

    The child process is killed if the awaiting task is cancelled (for example by a
    per-check timeout), so a cancelled check never leaves its tool running.
    """

    if not argv or not all(isinstance(a, str) and a for a in argv):
        raise ToolInvocationError("command argv missing/invalid", details={"argv": list(argv)})

    started = time.perf_counter()
    logger.debug("exec: %s (cwd=%s)", " ".join(argv), cwd)
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd),
            env=tool_env(env),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise ToolInvocationError(f"command not found: {argv[0]}", details={"argv": list(argv)}) from e
    except PermissionError as e:
        raise ToolInvocationError(f"command not executable: {argv[0]}", details={"argv": list(argv)}) from e

    try:
        out_b, err_b = await proc.communicate()
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        logger.debug("exec cancelled: %s", argv[0])
        raise

    duration_ms = int((time.perf_counter() - started) * 1000)
    return CommandOutcome(
        argv=tuple(argv),
        exit_code=proc.returncode if proc.returncode is not None else -1,
        stdout=out_b.decode("utf-8", errors="replace"),
        stderr=err_b.decode("utf-8", errors="replace"),
        duration_ms=duration_ms,
    )
