"""Command-line front end for trial_launch.

Examples:
  trial-launch launch --workdir /tmp/trials/abc --command "python3 train.py" --env SEED=1
  trial-launch alive 12345
  trial-launch kill 12345
  trial-launch state --workdir /tmp/trials/abc
  trial-launch count-files /tmp/trials/abc --timeout-s 5
  trial-launch dispatcher-cmd --tuner-class EvolutionTuner --tuner-args '{"optimize_mode":"maximize"}'
  trial-launch uid --length 8

Exit codes: 0 ok, 1 operational failure (timeout, missing path, trial not
finished), 2 configuration error.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Optional, Sequence, Tuple

from . import __version__
from .dispatcher_cmd import AdvisorSpec, AssessorSpec, TunerSpec, build_dispatcher_args
from .errors import InvalidConfiguration, NotFound, PlatformUnsupported, Timeout, TrialLaunchError
from .eventlog import EventLog
from .launcher import LaunchArtifacts, TrialLaunchSpec, read_trial_state
from .netinfo import HostContext
from .platforms import get_platform
from .probe import count_files_recursively
from .settings import Settings, load_settings
from .supervisor import is_alive, kill, launch_trial
from .unique_id import unique_string


def _parse_env_pair(raw: str) -> Tuple[str, str]:
    key, sep, value = raw.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {raw!r}")
    return key, value


def _parse_json(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"not valid JSON: {e}") from None


def _add_dispatcher_group(p: argparse.ArgumentParser, prefix: str) -> None:
    p.add_argument(f"--{prefix}-class", default=None, help=f"{prefix} class name")
    p.add_argument(f"--{prefix}-args", type=_parse_json, default=None, help=f"{prefix} class args (JSON)")
    p.add_argument(f"--{prefix}-dir", default=None, help=f"{prefix} code directory")
    p.add_argument(f"--{prefix}-file", default=None, help=f"{prefix} class file name")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="trial-launch", description="Launch and supervise trial processes.")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("--platform", default=None, help="posix | native-shell (default: host)")
    p.add_argument("--event-log", default=None, help="Append-only launch log (default: $TRIAL_LAUNCH_EVENT_LOG).")
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("uid", help="Print a random identifier.")
    sp.add_argument("--length", type=int, default=5)

    sp = sub.add_parser("dispatcher-cmd", help="Print the dispatcher command line.")
    for prefix in ("tuner", "assessor", "advisor"):
        _add_dispatcher_group(sp, prefix)
    sp.add_argument("--multi-phase", action="store_true")
    sp.add_argument("--multi-thread", action="store_true")
    sp.add_argument("--json", action="store_true", help="Print the argument list as JSON.")

    sp = sub.add_parser("launch", help="Materialize run script and start the trial.")
    sp.add_argument("--workdir", required=True, help="Absolute trial working directory.")
    sp.add_argument("--command", required=True, help="User command (interpreted by the trial shell).")
    sp.add_argument("--env", type=_parse_env_pair, action="append", default=[], help="KEY=VALUE (repeatable).")
    sp.add_argument("--code-dir", default=None, help="Directory to cd into before the command (default: workdir).")
    sp.add_argument("--export-host-ip", action="store_true", help="Export this host's IPv4 to the trial.")

    sp = sub.add_parser("alive", help="Exit 0 if the pid is alive, 1 otherwise.")
    sp.add_argument("pid", type=int)

    sp = sub.add_parser("kill", help="Terminate a pid (no-op if it is gone).")
    sp.add_argument("pid", type=int)

    sp = sub.add_parser("state", help="Print a trial's recorded exit code and completion time.")
    sp.add_argument("--workdir", required=True)

    sp = sub.add_parser("count-files", help="Count regular files under a directory (deadline-bounded).")
    sp.add_argument("directory")
    sp.add_argument("--timeout-s", type=float, default=None)

    return p


def _spec_or_none(cls, args: argparse.Namespace, prefix: str):
    name = getattr(args, f"{prefix}_class")
    if not name:
        return None
    return cls(
        class_name=name,
        class_args=getattr(args, f"{prefix}_args"),
        code_dir=getattr(args, f"{prefix}_dir"),
        class_filename=getattr(args, f"{prefix}_file"),
    )


def _cmd_dispatcher(args: argparse.Namespace, settings: Settings) -> int:
    argv = build_dispatcher_args(
        _spec_or_none(TunerSpec, args, "tuner"),
        _spec_or_none(AssessorSpec, args, "assessor"),
        _spec_or_none(AdvisorSpec, args, "advisor"),
        multi_phase=bool(args.multi_phase),
        multi_thread=bool(args.multi_thread),
        platform=settings.platform,
        python=settings.dispatcher_python,
        module=settings.dispatcher_module,
    )
    if args.json:
        print(json.dumps(argv, ensure_ascii=False))
    else:
        print(" ".join(argv))
    return 0


def _cmd_launch(args: argparse.Namespace, settings: Settings, log: EventLog) -> int:
    spec = TrialLaunchSpec(
        working_dir=Path(args.workdir).expanduser(),
        command=args.command,
        env=tuple(args.env),
        platform=get_platform(settings.platform).tag,
        code_dir=Path(args.code_dir).expanduser() if args.code_dir else None,
    )
    host = HostContext.resolve() if args.export_host_ip else None
    launched = asyncio.run(launch_trial(spec, settings, event_log=log, host=host))
    print(json.dumps(launched.to_json(), indent=2, sort_keys=True))
    return 0


def _cmd_state(args: argparse.Namespace, settings: Settings) -> int:
    artifacts = LaunchArtifacts.for_workdir(
        Path(args.workdir).expanduser().resolve(),
        get_platform(settings.platform).tag,
        settings.meta_dir_name,
    )
    state = read_trial_state(artifacts)
    if state is None:
        print(f"[trial] not finished (no {artifacts.state_path})")
        return 1
    print(json.dumps({"exit_code": state.exit_code, "completed_ms": state.completed_ms}, sort_keys=True))
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        settings = load_settings().with_overrides(platform=args.platform, event_log=args.event_log)
        log = EventLog(settings.event_log)
        platform = get_platform(settings.platform)

        if args.cmd == "uid":
            print(unique_string(int(args.length)))
            return 0
        if args.cmd == "dispatcher-cmd":
            return _cmd_dispatcher(args, settings)
        if args.cmd == "launch":
            return _cmd_launch(args, settings, log)
        if args.cmd == "alive":
            alive = asyncio.run(is_alive(args.pid, platform))
            print(f"[trial] pid={args.pid} alive={alive}")
            return 0 if alive else 1
        if args.cmd == "kill":
            asyncio.run(kill(args.pid, platform, event_log=log))
            print(f"[trial] kill sent pid={args.pid}")
            return 0
        if args.cmd == "state":
            return _cmd_state(args, settings)
        if args.cmd == "count-files":
            timeout_s = float(args.timeout_s) if args.timeout_s is not None else settings.probe_timeout_s
            count = asyncio.run(count_files_recursively(args.directory, timeout_s, platform, event_log=log))
            print(count)
            return 0
    except (InvalidConfiguration, PlatformUnsupported) as exc:
        print(f"[trial] error: {exc}", file=sys.stderr)
        return 2
    except (NotFound, Timeout) as exc:
        print(f"[trial] {type(exc).__name__}: {exc}", file=sys.stderr)
        return 1
    except TrialLaunchError as exc:
        print(f"[trial] error: {exc}", file=sys.stderr)
        return 1
    except (ValueError, OSError) as exc:
        # malformed state file, unwritable workdir, failed spawn
        print(f"[trial] {type(exc).__name__}: {exc}", file=sys.stderr)
        return 1

    parser.error(f"unknown command {args.cmd!r}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
