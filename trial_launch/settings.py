"""Environment-driven settings for trial_launch.

Every knob has a default and a ``TRIAL_LAUNCH_*`` override. CLI flags win
over both.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

from .errors import InvalidConfiguration


ENV_PREFIX = "TRIAL_LAUNCH_"

DEFAULT_META_DIR = ".nni"
DEFAULT_PROBE_TIMEOUT_S = 5.0
DEFAULT_DISPATCHER_PYTHON = "python3"
DEFAULT_DISPATCHER_MODULE = "nni"


@dataclass(frozen=True)
class Settings:
    meta_dir_name: str = DEFAULT_META_DIR
    probe_timeout_s: float = DEFAULT_PROBE_TIMEOUT_S
    dispatcher_python: str = DEFAULT_DISPATCHER_PYTHON
    dispatcher_module: str = DEFAULT_DISPATCHER_MODULE
    # None -> pick from the host at the boundary (see platforms.get_platform).
    platform: Optional[str] = None
    event_log: Optional[str] = None

    def with_overrides(self, **kwargs) -> "Settings":
        clean = {k: v for k, v in kwargs.items() if v is not None}
        return replace(self, **clean)


def _env_str(env: Mapping[str, str], name: str) -> Optional[str]:
    raw = env.get(ENV_PREFIX + name)
    if raw is None:
        return None
    raw = raw.strip()
    return raw or None


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = _env_str(env, name)
    if raw is None:
        return default
    try:
        val = float(raw)
    except ValueError:
        raise InvalidConfiguration(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from None
    if val <= 0.0:
        raise InvalidConfiguration(f"{ENV_PREFIX}{name} must be > 0, got {raw!r}")
    return val


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if env is None else env

    meta = _env_str(env, "META_DIR") or DEFAULT_META_DIR
    if "/" in meta or "\\" in meta or meta in (".", ".."):
        raise InvalidConfiguration(f"{ENV_PREFIX}META_DIR must be a plain directory name, got {meta!r}")

    return Settings(
        meta_dir_name=meta,
        probe_timeout_s=_env_float(env, "PROBE_TIMEOUT_S", DEFAULT_PROBE_TIMEOUT_S),
        dispatcher_python=_env_str(env, "DISPATCHER_PYTHON") or DEFAULT_DISPATCHER_PYTHON,
        dispatcher_module=_env_str(env, "DISPATCHER_MODULE") or DEFAULT_DISPATCHER_MODULE,
        platform=_env_str(env, "PLATFORM"),
        event_log=_env_str(env, "EVENT_LOG"),
    )
