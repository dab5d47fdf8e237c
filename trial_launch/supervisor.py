"""Spawn trial processes and manage them by pid alone.

``spawn`` returns a bare pid. ``is_alive`` and ``kill`` take nothing but that
pid, so a manager that restarted (and never held a process object) can still
poll and stop trials it launched in a previous life. Pids are recycled by the
OS eventually; treat them as valid only until the state file shows up.
"""

from __future__ import annotations

import asyncio
import os
import subprocess
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, NewType, Optional, Union

from .eventlog import NULL_LOG, EventLog
from .launcher import LaunchArtifacts, TrialLaunchSpec, materialize
from .netinfo import HostContext
from .platforms import Platform, PlatformTag, get_platform
from .settings import Settings


ProcessHandle = NewType("ProcessHandle", int)

PlatformLike = Union[None, str, PlatformTag, Platform]

# Popen objects of trials started by this process, keyed by pid. Holding them
# lets is_alive() collect their exit status through Popen itself; pids that
# are not in here are only ever observed, never waited on.
_children: Dict[int, subprocess.Popen] = {}


@dataclass(frozen=True)
class LaunchedTrial:
    pid: ProcessHandle
    artifacts: LaunchArtifacts

    def to_json(self) -> Dict[str, Any]:
        a = self.artifacts
        return {
            "version": 1,
            "pid": int(self.pid),
            "working_dir": str(a.working_dir),
            "script": str(a.script_path),
            "metrics": str(a.metrics_path),
            "state": str(a.state_path),
            "stderr": str(a.stderr_path),
            "stdout": str(a.stdout_path),
        }


def _child_env(env: Optional[Mapping[str, str]]) -> Optional[Dict[str, str]]:
    if env is None:
        return None
    merged = dict(os.environ)
    merged.update({str(k): str(v) for k, v in env.items()})
    return merged


async def spawn(
    command: Union[str, List[str]],
    cwd: Union[str, Path],
    env: Optional[Mapping[str, str]] = None,
    *,
    platform: PlatformLike = None,
    stdout_path: Optional[Path] = None,
    stderr_path: Optional[Path] = None,
    event_log: Optional[EventLog] = None,
) -> ProcessHandle:
    """Start ``command`` in ``cwd`` and return its pid.

    POSIX hands the whole string to a shell; the native shell has no
    single-string process creation, so the command is split into program and
    arguments there (see ``NativeShellPlatform.spawn_argv``). The child gets
    its own session/process group so ``kill`` reaches the whole trial tree.
    """

    strategy = get_platform(platform)
    log = event_log or NULL_LOG
    if isinstance(command, list):
        command = " ".join(command)
    target, use_shell = strategy.spawn_argv(command)

    popen_kwargs: Dict[str, Any] = {
        "cwd": str(cwd),
        "env": _child_env(env),
        "stdin": subprocess.DEVNULL,
        "shell": use_shell,
    }
    popen_kwargs.update(strategy.session_kwargs())

    # Append-only, like every other trial artifact.
    out_f = stdout_path.open("ab") if stdout_path is not None else None
    err_f = stderr_path.open("ab") if stderr_path is not None else None
    try:
        popen_kwargs["stdout"] = out_f if out_f is not None else subprocess.DEVNULL
        popen_kwargs["stderr"] = err_f if err_f is not None else subprocess.DEVNULL
        # Plain Popen: the child must outlive this event loop (and this process).
        proc = await asyncio.to_thread(subprocess.Popen, target, **popen_kwargs)  # noqa: S602
    except OSError as e:
        log.event("spawn_failed", command=command, cwd=str(cwd), error=repr(e))
        raise
    finally:
        # The child holds its own copies of the descriptors.
        for f in (out_f, err_f):
            if f is not None:
                f.close()

    pid = ProcessHandle(int(proc.pid))
    _children[int(pid)] = proc
    log.event("spawn", pid=int(pid), command=command, cwd=str(cwd), platform=strategy.tag.value)
    return pid


async def is_alive(pid: int, platform: PlatformLike = None) -> bool:
    """Best-effort liveness probe. A missing process is ``False``, never an error."""

    proc = _children.get(int(pid))
    if proc is not None:
        if proc.poll() is None:
            return True
        del _children[int(pid)]
        return False
    return await get_platform(platform).is_alive(int(pid))


async def kill(pid: int, platform: PlatformLike = None, event_log: Optional[EventLog] = None) -> None:
    """Signal termination; a pid that is already gone is a no-op."""

    await get_platform(platform).kill(int(pid))
    (event_log or NULL_LOG).event("kill", pid=int(pid))


MANAGER_IP_ENV = "TRIAL_LAUNCH_MANAGER_IP"


async def launch_trial(
    spec: TrialLaunchSpec,
    settings: Optional[Settings] = None,
    event_log: Optional[EventLog] = None,
    host: Optional[HostContext] = None,
) -> LaunchedTrial:
    """Materialize the launcher for ``spec`` and start it.

    With ``host`` the manager's address is exported to the trial as
    ``TRIAL_LAUNCH_MANAGER_IP`` (user overrides of the same name still win).
    """

    settings = settings or Settings()
    log = event_log or NULL_LOG
    if host is not None:
        spec = replace(spec, env=((MANAGER_IP_ENV, host.ipv4_address),) + spec.env)

    artifacts, invocation = await materialize(spec, settings)
    log.line(f"materialized {artifacts.script_path} (meta={artifacts.meta_dir})")

    pid = await spawn(
        invocation,
        artifacts.working_dir,
        platform=spec.platform,
        stdout_path=artifacts.stdout_path,
        event_log=log,
    )
    return LaunchedTrial(pid=pid, artifacts=artifacts)
