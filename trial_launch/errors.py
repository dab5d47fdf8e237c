"""Error taxonomy for trial launch.

Configuration and platform errors are raised at the point of validation and
are meant to reach the caller. Dead pids are never errors.
"""

from __future__ import annotations

from typing import Optional


class TrialLaunchError(Exception):
    """Base class for every error raised by trial_launch."""


class InvalidConfiguration(TrialLaunchError, ValueError):
    pass


class NotFound(TrialLaunchError, FileNotFoundError):
    pass


class Timeout(TrialLaunchError, TimeoutError):
    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


class PlatformUnsupported(TrialLaunchError, RuntimeError):
    pass


class AddressUnavailable(TrialLaunchError, OSError):
    pass
