"""Deadline-bounded filesystem probes used while monitoring trials.

The enumeration runs as an external command (``find | wc -l`` or the
PowerShell equivalent) raced against a timer. Whichever finishes first wins;
the other is cancelled, and a still-running command is killed with its whole
process group on every exit path.
"""

from __future__ import annotations

import asyncio
import os
import signal
import subprocess
from pathlib import Path
from typing import Optional, Union

from .errors import NotFound, Timeout
from .eventlog import NULL_LOG, EventLog
from .platforms import Platform, PlatformTag, get_platform
from .settings import DEFAULT_PROBE_TIMEOUT_S


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        if os.name == "nt":
            proc.kill()
        else:
            os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    await proc.wait()


def _parse_count(raw: bytes) -> int:
    text = raw.decode("utf-8", errors="replace").strip()
    try:
        return int(text)
    except ValueError:
        return -1


async def run_with_deadline(
    command: str,
    timeout_s: float,
    *,
    label: str,
    platform: Union[None, str, PlatformTag, Platform] = None,
) -> bytes:
    """Run ``command`` in a shell and return stdout, or raise :class:`Timeout`."""

    proc = await asyncio.create_subprocess_shell(
        command,
        stdout=subprocess.PIPE,
        stderr=subprocess.DEVNULL,
        stdin=subprocess.DEVNULL,
        **get_platform(platform).session_kwargs(),
    )
    probe = asyncio.ensure_future(proc.communicate())
    timer = asyncio.ensure_future(asyncio.sleep(timeout_s))
    try:
        done, _ = await asyncio.wait({probe, timer}, return_when=asyncio.FIRST_COMPLETED)
        if probe in done:
            out, _ = probe.result()
            return out
        raise Timeout(f"Timeout: path {label} has too many files", path=label)
    finally:
        for task in (probe, timer):
            if not task.done():
                task.cancel()
        await _terminate(proc)
        await asyncio.gather(probe, timer, return_exceptions=True)


async def count_files_recursively(
    directory: Union[str, Path],
    timeout_s: float = DEFAULT_PROBE_TIMEOUT_S,
    platform: Union[None, str, PlatformTag, Platform] = None,
    event_log: Optional[EventLog] = None,
) -> int:
    """Count regular files under ``directory``; ``-1`` if the tool printed nothing usable."""

    path = str(directory)
    if not os.path.isdir(path):
        raise NotFound(f"Directory {path} doesn't exist")

    strategy = get_platform(platform)
    try:
        out = await run_with_deadline(strategy.count_files_command(path), timeout_s, label=path, platform=strategy)
    except Timeout:
        (event_log or NULL_LOG).event("probe_timeout", path=path, timeout_s=float(timeout_s))
        raise
    return _parse_count(out)
