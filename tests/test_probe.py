"""Tests for the deadline-bounded file counter."""

from __future__ import annotations

import asyncio
import os
import shlex
import shutil
import tempfile
import time
import unittest
from pathlib import Path
from typing import Any, Dict

import conftest  # noqa: F401  (import side-effect: sys.path bootstrap)

from trial_launch.errors import NotFound, Timeout
from trial_launch.eventlog import EventLog
from trial_launch.platforms import PosixPlatform
from trial_launch.probe import _parse_count, count_files_recursively, run_with_deadline
from trial_launch.supervisor import is_alive


_POSIX = os.name == "posix" and shutil.which("find") is not None


class _SlowPosix(PosixPlatform):
    """Count command that records its worker pid, then hangs."""

    def __init__(self, pid_file: Path) -> None:
        self.pid_file = pid_file

    def count_files_command(self, directory: str) -> str:
        return f"sleep 30 & echo $! > {shlex.quote(str(self.pid_file))}; wait; echo 4"


class _RecordingPosix(PosixPlatform):
    """Counts how often the session flags were asked for."""

    def __init__(self) -> None:
        self.session_calls = 0

    def session_kwargs(self) -> Dict[str, Any]:
        self.session_calls += 1
        return super().session_kwargs()


class TestParseCount(unittest.TestCase):
    def test_parse(self) -> None:
        self.assertEqual(_parse_count(b"       4\n"), 4)
        self.assertEqual(_parse_count(b"0\n"), 0)
        self.assertEqual(_parse_count(b""), -1)
        self.assertEqual(_parse_count(b"n/a"), -1)


class TestRunWithDeadline(unittest.IsolatedAsyncioTestCase):
    @unittest.skipUnless(_POSIX, "needs a POSIX shell")
    async def test_returns_stdout(self) -> None:
        self.assertEqual(await run_with_deadline("echo 7", 10.0, label="x"), b"7\n")

    @unittest.skipUnless(_POSIX, "needs a POSIX shell")
    async def test_deadline_message(self) -> None:
        with self.assertRaises(Timeout) as ctx:
            await run_with_deadline("sleep 30", 0.5, label="/some/dir")
        self.assertEqual(str(ctx.exception), "Timeout: path /some/dir has too many files")


class TestCountFiles(unittest.IsolatedAsyncioTestCase):
    async def test_missing_directory(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            with self.assertRaises(NotFound):
                await count_files_recursively(Path(td) / "nope")

    async def test_not_found_is_file_not_found(self) -> None:
        with self.assertRaises(FileNotFoundError):
            await count_files_recursively("/definitely/not/here/at/all")

    @unittest.skipUnless(_POSIX, "needs find")
    async def test_counts_nested_files(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            (root / "a" / "b").mkdir(parents=True)
            (root / "c").mkdir()
            (root / "top.txt").write_text("x", encoding="utf-8")
            (root / "a" / "one.txt").write_text("x", encoding="utf-8")
            (root / "a" / "b" / "two.txt").write_text("x", encoding="utf-8")
            (root / "a" / "b" / "three.txt").write_text("x", encoding="utf-8")
            self.assertEqual(await count_files_recursively(root), 4)

    @unittest.skipUnless(_POSIX, "needs find")
    async def test_uses_the_chosen_platform(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            (Path(td) / "f").write_text("x", encoding="utf-8")
            platform = _RecordingPosix()
            self.assertEqual(await count_files_recursively(td, platform=platform), 1)
            self.assertEqual(platform.session_calls, 1)

    @unittest.skipUnless(_POSIX, "needs find")
    async def test_empty_directory_is_zero(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            (Path(td) / "only_dirs" / "deeper").mkdir(parents=True)
            self.assertEqual(await count_files_recursively(td), 0)

    @unittest.skipUnless(_POSIX, "needs find")
    async def test_timeout_releases_command(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            pid_file = Path(td) / "worker.pid"
            log = EventLog(Path(td) / "probe.log")
            before = set(asyncio.all_tasks())
            started = time.monotonic()
            with self.assertRaises(Timeout) as ctx:
                await count_files_recursively(td, timeout_s=1.0, platform=_SlowPosix(pid_file), event_log=log)
            self.assertLess(time.monotonic() - started, 10.0)
            self.assertEqual(ctx.exception.path, td)
            self.assertIsInstance(ctx.exception, TimeoutError)

            # the hanging worker was killed with its process group
            worker = int(pid_file.read_text(encoding="utf-8").strip())
            for _ in range(50):
                if not await is_alive(worker):
                    break
                await asyncio.sleep(0.1)
            self.assertFalse(await is_alive(worker))

            # no leftover timer/probe tasks
            self.assertEqual(set(asyncio.all_tasks()) - before, set())

            self.assertIn("probe_timeout", log.path.read_text(encoding="utf-8"))

    @unittest.skipUnless(_POSIX, "needs find")
    async def test_fast_probe_cancels_timer(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            (Path(td) / "f").write_text("x", encoding="utf-8")
            before = set(asyncio.all_tasks())
            self.assertEqual(await count_files_recursively(td, timeout_s=30.0), 1)
            self.assertEqual(set(asyncio.all_tasks()) - before, set())

    @unittest.skipUnless(_POSIX, "needs find")
    async def test_caller_cancellation_cleans_up(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            pid_file = Path(td) / "worker.pid"
            task = asyncio.ensure_future(count_files_recursively(td, timeout_s=30.0, platform=_SlowPosix(pid_file)))
            for _ in range(100):
                if pid_file.exists() and pid_file.read_text(encoding="utf-8").strip():
                    break
                await asyncio.sleep(0.05)
            task.cancel()
            with self.assertRaises(asyncio.CancelledError):
                await task
            worker = int(pid_file.read_text(encoding="utf-8").strip())
            for _ in range(50):
                if not await is_alive(worker):
                    break
                await asyncio.sleep(0.1)
            self.assertFalse(await is_alive(worker))


if __name__ == "__main__":
    unittest.main()
