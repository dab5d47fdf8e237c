"""Materialize a trial's launcher script and its on-disk scaffolding.

Layout under the trial working directory::

    <workdir>/run.sh | run.ps1   rendered launcher (owner-executable)
    <workdir>/stderr             user command stderr
    <workdir>/stdout             user command stdout (when spawned via launch_trial)
    <workdir>/<meta>/metrics     pre-created, append-only metric sink
    <workdir>/<meta>/state       "<exit_code> <epoch_ms>", written once at exit

The state file is the durable outcome record: a supervisor that restarted
after spawning learns the trial result from it alone.
"""

from __future__ import annotations

import asyncio
import enum
import os
import re
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Mapping, Optional, Tuple, Union

from .errors import InvalidConfiguration
from .platforms import PlatformTag, get_platform, parse_tag
from .settings import DEFAULT_META_DIR, Settings


_ENV_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

EnvPairs = Tuple[Tuple[str, str], ...]


def _coerce_env(env: Union[None, Mapping[str, str], Iterable[Tuple[str, str]]]) -> EnvPairs:
    if env is None:
        return ()
    items = env.items() if isinstance(env, Mapping) else env
    out = []
    for pair in items:
        key, value = pair
        key = str(key)
        if not _ENV_KEY_RE.match(key):
            raise InvalidConfiguration(f"invalid environment variable name: {key!r}")
        out.append((key, str(value)))
    return tuple(out)


@dataclass(frozen=True)
class TrialLaunchSpec:
    working_dir: Path
    command: str
    env: EnvPairs = ()
    platform: PlatformTag = field(default_factory=lambda: get_platform().tag)
    code_dir: Optional[Path] = None

    def __post_init__(self) -> None:
        wd = Path(self.working_dir)
        if not wd.is_absolute():
            raise InvalidConfiguration(f"working_dir must be absolute, got {str(self.working_dir)!r}")
        if not str(self.command).strip():
            raise InvalidConfiguration("command must be non-empty")
        object.__setattr__(self, "working_dir", wd)
        object.__setattr__(self, "env", _coerce_env(self.env))
        object.__setattr__(self, "platform", parse_tag(self.platform))
        if self.code_dir is not None:
            object.__setattr__(self, "code_dir", Path(self.code_dir))

    @property
    def cwd(self) -> Path:
        return self.code_dir if self.code_dir is not None else self.working_dir

    def effective_env(self) -> List[Tuple[str, str]]:
        """Overrides with duplicates collapsed: first-seen order, last value wins."""

        merged = {}
        for key, value in self.env:
            merged[key] = value
        return list(merged.items())


@dataclass(frozen=True)
class LaunchArtifacts:
    working_dir: Path
    meta_dir: Path
    script_path: Path
    metrics_path: Path
    state_path: Path
    stderr_path: Path
    stdout_path: Path

    @classmethod
    def for_spec(cls, spec: TrialLaunchSpec, meta_dir_name: str = DEFAULT_META_DIR) -> "LaunchArtifacts":
        return cls.for_workdir(spec.working_dir, spec.platform, meta_dir_name)

    @classmethod
    def for_workdir(
        cls,
        working_dir: Path,
        platform: Union[str, PlatformTag],
        meta_dir_name: str = DEFAULT_META_DIR,
    ) -> "LaunchArtifacts":
        """Paths of an existing (or future) trial, e.g. after a manager restart."""

        wd = Path(working_dir)
        meta = wd / meta_dir_name
        return cls(
            working_dir=wd,
            meta_dir=meta,
            script_path=wd / get_platform(platform).script_name,
            metrics_path=meta / "metrics",
            state_path=meta / "state",
            stderr_path=wd / "stderr",
            stdout_path=wd / "stdout",
        )


@dataclass(frozen=True)
class TrialState:
    exit_code: int
    completed_ms: int

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


class TrialJobStatus(str, enum.Enum):
    EARLY_STOPPED = "EARLY_STOPPED"
    USER_CANCELED = "USER_CANCELED"


def job_cancel_status(is_early_stopped: bool) -> TrialJobStatus:
    return TrialJobStatus.EARLY_STOPPED if is_early_stopped else TrialJobStatus.USER_CANCELED


def generate_param_file_name(index: int) -> str:
    if index < 0:
        raise InvalidConfiguration(f"parameter index must be >= 0, got {index}")
    if index == 0:
        return "parameter.cfg"
    return f"parameter_{index}.cfg"


def _prepare_scaffolding(artifacts: LaunchArtifacts) -> None:
    artifacts.working_dir.mkdir(parents=True, exist_ok=True)
    artifacts.meta_dir.mkdir(parents=True, exist_ok=True)
    # touch: never truncate metrics a previous attempt already appended
    artifacts.metrics_path.touch(exist_ok=True)
    # the outcome of a previous attempt must not pass for this one
    artifacts.state_path.unlink(missing_ok=True)
    Path(str(artifacts.state_path) + ".tmp").unlink(missing_ok=True)


def _write_script(path: Path, text: str) -> None:
    # newline="" keeps CRLF line endings of the PowerShell dialect as rendered
    with path.open("w", encoding="utf-8", newline="") as f:
        f.write(text)
    mode = path.stat().st_mode
    os.chmod(path, mode | stat.S_IRWXU | stat.S_IRGRP | stat.S_IXGRP | stat.S_IROTH | stat.S_IXOTH)


async def materialize(spec: TrialLaunchSpec, settings: Optional[Settings] = None) -> Tuple[LaunchArtifacts, List[str]]:
    """Create scaffolding, write the launcher, return ``(artifacts, invocation)``.

    Order matters: directories and the metrics sink exist before the script
    is written, and the script is executable before anyone can spawn it.
    """

    settings = settings or Settings()
    platform = get_platform(spec.platform)
    artifacts = LaunchArtifacts.for_spec(spec, settings.meta_dir_name)

    await asyncio.to_thread(_prepare_scaffolding, artifacts)
    text = platform.render_script(spec, artifacts)
    await asyncio.to_thread(_write_script, artifacts.script_path, text)
    return artifacts, platform.script_invocation()


def read_trial_state(artifacts: LaunchArtifacts) -> Optional[TrialState]:
    """Parse ``<meta>/state``; ``None`` while the trial has not finished."""

    try:
        raw = artifacts.state_path.read_text(encoding="utf-8-sig")
    except FileNotFoundError:
        return None
    parts = raw.split()
    if len(parts) != 2:
        raise ValueError(f"malformed state file {artifacts.state_path}: {raw!r}")
    try:
        return TrialState(exit_code=int(parts[0]), completed_ms=int(parts[1]))
    except ValueError:
        raise ValueError(f"malformed state file {artifacts.state_path}: {raw!r}") from None
