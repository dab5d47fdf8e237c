"""Per-platform launch strategies.

A trial runs either under a POSIX shell (``bash run.sh``) or under PowerShell
(``powershell run.ps1``). Everything that differs between the two lives here:
launcher dialect, argument quoting, spawn semantics, liveness probe and kill.
Callers pick one strategy at the boundary via :func:`get_platform` and stay
platform-agnostic afterwards.

Contract shared by both dialects (monitors depend on it):
  - ``<workdir>/stderr`` receives the user command's stderr
  - ``<workdir>/<meta>/state`` appears once, holding ``"<exit> <epoch_ms>\\n"``
"""

from __future__ import annotations

import asyncio
import enum
import json
import os
import shlex
import signal
import subprocess
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple, Union

from .errors import PlatformUnsupported

if TYPE_CHECKING:
    from .launcher import LaunchArtifacts, TrialLaunchSpec


class PlatformTag(str, enum.Enum):
    POSIX = "posix"
    NATIVE_SHELL = "native-shell"


def _compact_json(payload: Any) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


class Platform:
    tag: PlatformTag
    script_name: str
    line_sep: str
    interpreter: str

    def render_script(self, spec: "TrialLaunchSpec", artifacts: "LaunchArtifacts") -> str:
        raise NotImplementedError

    def script_invocation(self) -> List[str]:
        return [self.interpreter, self.script_name]

    def encode_args(self, payload: Any) -> str:
        raise NotImplementedError

    def spawn_argv(self, command: str) -> Tuple[Union[str, List[str]], bool]:
        """Return ``(command_or_argv, use_shell)`` for process creation."""
        raise NotImplementedError

    def session_kwargs(self) -> Dict[str, Any]:
        raise NotImplementedError

    async def is_alive(self, pid: int) -> bool:
        raise NotImplementedError

    async def kill(self, pid: int) -> None:
        raise NotImplementedError

    def count_files_command(self, directory: str) -> str:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(tag={self.tag.value!r})"


class PosixPlatform(Platform):
    tag = PlatformTag.POSIX
    script_name = "run.sh"
    line_sep = "\n"
    interpreter = "bash"

    def render_script(self, spec: "TrialLaunchSpec", artifacts: "LaunchArtifacts") -> str:
        q = shlex.quote
        tmp_state = str(artifacts.state_path) + ".tmp"

        def record(status: str) -> str:
            return f"echo {status} `date +%s000` >{q(tmp_state)}"

        publish = f"mv -f {q(tmp_state)} {q(str(artifacts.state_path))}"
        failed = record("1")
        # A missing code dir is a failed trial, not a run in the wrong directory.
        lines = ["#!/bin/bash", f"cd {q(str(spec.cwd))} || {{ {failed} && {publish}; exit 1; }}"]
        for key, value in spec.effective_env():
            lines.append(f"export {key}={q(value)}")
        # Subshell so `exit N` inside the command still reaches the state write.
        lines.append(f"(eval {q(spec.command)}) 2>{q(str(artifacts.stderr_path))}")
        lines.append("__trial_exit=$?")
        lines.append(record("$__trial_exit"))
        lines.append(publish)
        return self.line_sep.join(lines) + self.line_sep

    def encode_args(self, payload: Any) -> str:
        # The shell strips one quoting level; the dispatcher decodes exactly one more.
        return json.dumps(_compact_json(payload), ensure_ascii=False)

    def spawn_argv(self, command: str) -> Tuple[Union[str, List[str]], bool]:
        return command, True

    def session_kwargs(self) -> Dict[str, Any]:
        # Own session -> pid doubles as process group id for kill().
        return {"start_new_session": True}

    async def _is_zombie(self, pid: int) -> bool:
        proc_stat = f"/proc/{int(pid)}/stat"
        if os.path.isdir("/proc/self"):
            try:
                with open(proc_stat, "r", encoding="utf-8", errors="replace") as f:
                    raw = f.read()
            except OSError:
                # vanished between kill(0) and here
                return True
            # "<pid> (<comm>) <state> ..."; comm may contain spaces and parens
            return raw[raw.rfind(")") + 1 :].split()[:1] == ["Z"]
        try:
            proc = await asyncio.create_subprocess_exec(
                "ps",
                "-o",
                "stat=",
                "-p",
                str(int(pid)),
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                stdin=subprocess.DEVNULL,
            )
        except OSError:
            # no ps on minimal images; signal 0 is the whole answer then
            return False
        out, _ = await proc.communicate()
        stat = out.decode("utf-8", errors="replace").strip()
        return proc.returncode == 0 and "Z" in stat

    async def is_alive(self, pid: int) -> bool:
        # Observation only: never waitpid() here, the exit status belongs to whoever owns the child.
        if pid <= 0:
            return False
        try:
            os.kill(int(pid), 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            # exists, owned by someone else
            return True
        return not await self._is_zombie(pid)

    async def kill(self, pid: int) -> None:
        if pid <= 0:
            return
        try:
            os.killpg(int(pid), signal.SIGTERM)
            return
        except ProcessLookupError:
            pass
        try:
            os.kill(int(pid), signal.SIGTERM)
        except ProcessLookupError:
            pass

    def count_files_command(self, directory: str) -> str:
        return f"find {shlex.quote(directory)} -type f | wc -l"


def _ps_quote(value: str) -> str:
    return "'" + str(value).replace("'", "''") + "'"


class NativeShellPlatform(Platform):
    tag = PlatformTag.NATIVE_SHELL
    script_name = "run.ps1"
    line_sep = "\r\n"
    interpreter = "powershell"

    def render_script(self, spec: "TrialLaunchSpec", artifacts: "LaunchArtifacts") -> str:
        q = _ps_quote
        tmp_state = str(artifacts.state_path) + ".tmp"
        now = "[DateTimeOffset]::UtcNow.ToUnixTimeMilliseconds()"
        publish = f"Move-Item -LiteralPath {q(tmp_state)} -Destination {q(str(artifacts.state_path))} -Force"
        lines = [
            f"try {{ Set-Location -LiteralPath {q(str(spec.cwd))} -ErrorAction Stop }} catch {{ "
            f'[System.IO.File]::WriteAllText({q(tmp_state)}, "1 $({now})`n"); {publish}; exit 1 }}'
        ]
        for key, value in spec.effective_env():
            lines.append(f"$env:{key} = {q(value)}")
        lines.extend(
            [
                "$global:LASTEXITCODE = 0",
                f"Invoke-Expression {q(spec.command)} 2>{q(str(artifacts.stderr_path))}",
                "$ok = $?",
                "$state = $LASTEXITCODE",
                "if (-not $ok -and $state -eq 0) { $state = 2 }",
                f"$NOW_DATE = {now}",
                f'[System.IO.File]::WriteAllText({q(tmp_state)}, "$state $NOW_DATE`n")',
                publish,
            ]
        )
        return self.line_sep.join(lines) + self.line_sep

    def script_invocation(self) -> List[str]:
        return [self.interpreter, "-NoProfile", "-ExecutionPolicy", "Bypass", "-File", self.script_name]

    def encode_args(self, payload: Any) -> str:
        return _compact_json(payload)

    def spawn_argv(self, command: str) -> Tuple[Union[str, List[str]], bool]:
        command = "python".join(command.split("python3"))
        program = command.split(" ", 1)[0]
        rest = command[len(program) + 1 :]
        args = rest.split(" ") if rest else []
        return [program] + args, False

    def session_kwargs(self) -> Dict[str, Any]:
        return {"creationflags": int(getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0))}

    async def _run(self, *argv: str) -> Tuple[int, str]:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
        )
        out, _ = await proc.communicate()
        return int(proc.returncode or 0), out.decode("utf-8", errors="replace")

    async def is_alive(self, pid: int) -> bool:
        if pid <= 0:
            return False
        _, out = await self._run("tasklist", "/FI", f"PID eq {int(pid)}")
        return "No tasks" not in out

    async def kill(self, pid: int) -> None:
        if pid <= 0:
            return
        # /T = tree, /F = force; non-zero rc just means the pid is gone
        await self._run("taskkill", "/PID", str(int(pid)), "/T", "/F")

    def count_files_command(self, directory: str) -> str:
        inner = f"(Get-ChildItem -LiteralPath {_ps_quote(directory)} -Recurse -File -Force | Measure-Object).Count"
        return f'powershell -NoProfile -NonInteractive -Command "{inner}"'


_STRATEGIES = {
    PlatformTag.POSIX: PosixPlatform,
    PlatformTag.NATIVE_SHELL: NativeShellPlatform,
}


def host_tag() -> PlatformTag:
    return PlatformTag.NATIVE_SHELL if os.name == "nt" else PlatformTag.POSIX


def parse_tag(raw: Union[str, PlatformTag]) -> PlatformTag:
    if isinstance(raw, PlatformTag):
        return raw
    key = str(raw).strip().lower()
    aliases = {"win32": "native-shell", "windows": "native-shell", "nt": "native-shell", "linux": "posix", "darwin": "posix"}
    key = aliases.get(key, key)
    try:
        return PlatformTag(key)
    except ValueError:
        raise PlatformUnsupported(f"unsupported platform {raw!r} (expected one of: posix, native-shell)") from None


def get_platform(tag: Optional[Union[str, PlatformTag, Platform]] = None) -> Platform:
    if isinstance(tag, Platform):
        return tag
    resolved = host_tag() if tag is None else parse_tag(tag)
    return _STRATEGIES[resolved]()
