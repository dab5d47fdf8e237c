"""Launch, watch and stop trial processes.

Public surface (see the submodules for details):
  - unique_string / random_select          short random ids
  - build_dispatcher_args / _command       dispatcher process command line
  - TrialLaunchSpec / materialize          launcher script + scaffolding
  - spawn / is_alive / kill / launch_trial pid-keyed process control
  - count_files_recursively                deadline-bounded directory probe
"""

from __future__ import annotations

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("trial-launch")
except PackageNotFoundError:  # running from a source checkout
    __version__ = "0.0.0"

from .dispatcher_cmd import AdvisorSpec, AssessorSpec, DispatcherSpec, TunerSpec, build_dispatcher_args, build_dispatcher_command
from .errors import AddressUnavailable, InvalidConfiguration, NotFound, PlatformUnsupported, Timeout, TrialLaunchError
from .launcher import LaunchArtifacts, TrialLaunchSpec, TrialState, materialize, read_trial_state
from .netinfo import HostContext, get_remote_tmp_dir, resolve_ipv4_address
from .platforms import NativeShellPlatform, Platform, PlatformTag, PosixPlatform, get_platform
from .probe import count_files_recursively
from .settings import Settings, load_settings
from .supervisor import LaunchedTrial, ProcessHandle, is_alive, kill, launch_trial, spawn
from .unique_id import random_select, unique_string

__all__ = [
    "AddressUnavailable",
    "AdvisorSpec",
    "AssessorSpec",
    "DispatcherSpec",
    "HostContext",
    "InvalidConfiguration",
    "LaunchArtifacts",
    "LaunchedTrial",
    "NativeShellPlatform",
    "NotFound",
    "Platform",
    "PlatformTag",
    "PlatformUnsupported",
    "PosixPlatform",
    "ProcessHandle",
    "Settings",
    "Timeout",
    "TrialLaunchError",
    "TrialLaunchSpec",
    "TrialState",
    "TunerSpec",
    "build_dispatcher_args",
    "build_dispatcher_command",
    "count_files_recursively",
    "get_platform",
    "get_remote_tmp_dir",
    "is_alive",
    "kill",
    "launch_trial",
    "load_settings",
    "materialize",
    "random_select",
    "read_trial_state",
    "resolve_ipv4_address",
    "spawn",
    "unique_string",
]
