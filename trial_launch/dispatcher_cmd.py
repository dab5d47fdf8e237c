"""Command line for the dispatcher process (tuner/assessor or advisor).

Builtin tuner::

    TunerSpec(class_name="EvolutionTuner",
              class_args={"optimize_mode": "maximize", "population_size": 3})

Customized tuner::

    TunerSpec(class_name="BestTuner", code_dir="/tmp/mytuner",
              class_filename="best_tuner.py", class_args={...})

Exactly one of {tuner (+ optional assessor), advisor} per invocation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, List, Optional, Union

from .errors import InvalidConfiguration
from .platforms import Platform, PlatformTag, get_platform
from .settings import DEFAULT_DISPATCHER_MODULE, DEFAULT_DISPATCHER_PYTHON


@dataclass(frozen=True)
class DispatcherSpec:
    flag_prefix: ClassVar[str] = ""

    class_name: str
    class_args: Any = None
    code_dir: Optional[str] = None
    class_filename: Optional[str] = None


@dataclass(frozen=True)
class TunerSpec(DispatcherSpec):
    flag_prefix: ClassVar[str] = "tuner"


@dataclass(frozen=True)
class AssessorSpec(DispatcherSpec):
    flag_prefix: ClassVar[str] = "assessor"


@dataclass(frozen=True)
class AdvisorSpec(DispatcherSpec):
    flag_prefix: ClassVar[str] = "advisor"


def _meaningful(value: Optional[str]) -> bool:
    # single-character values (".", "/") are treated as unset
    return value is not None and len(value) > 1


def _group_args(spec: DispatcherSpec, platform: Platform) -> List[str]:
    p = spec.flag_prefix
    out = [f"--{p}_class_name", str(spec.class_name)]
    if spec.class_args is not None:
        out += [f"--{p}_args", platform.encode_args(spec.class_args)]
    if _meaningful(spec.code_dir):
        out += [f"--{p}_directory", str(spec.code_dir)]
    if _meaningful(spec.class_filename):
        out += [f"--{p}_class_filename", str(spec.class_filename)]
    return out


def build_dispatcher_args(
    tuner: Optional[TunerSpec] = None,
    assessor: Optional[AssessorSpec] = None,
    advisor: Optional[AdvisorSpec] = None,
    *,
    multi_phase: bool = False,
    multi_thread: bool = False,
    platform: Union[None, str, PlatformTag, Platform] = None,
    python: str = DEFAULT_DISPATCHER_PYTHON,
    module: str = DEFAULT_DISPATCHER_MODULE,
) -> List[str]:
    if (tuner is not None or assessor is not None) and advisor is not None:
        raise InvalidConfiguration("specify both tuner/assessor and advisor is not allowed")
    if tuner is None and advisor is None:
        raise InvalidConfiguration("specify neither tuner nor advisor is not allowed")

    strategy = get_platform(platform)
    argv = [python, "-m", module]
    if multi_phase:
        argv.append("--multi_phase")
    if multi_thread:
        argv.append("--multi_thread")

    if advisor is not None:
        argv += _group_args(advisor, strategy)
        return argv

    argv += _group_args(tuner, strategy)
    if assessor is not None and assessor.class_name:
        argv += _group_args(assessor, strategy)
    return argv


def build_dispatcher_command(*args: Any, **kwargs: Any) -> str:
    """Same as :func:`build_dispatcher_args`, joined into the string spawn() takes."""

    return " ".join(build_dispatcher_args(*args, **kwargs))
