"""Tests for the dispatcher command line builder."""

from __future__ import annotations

import json
import shlex
import unittest

import conftest  # noqa: F401  (import side-effect: sys.path bootstrap)

from trial_launch.dispatcher_cmd import (
    AdvisorSpec,
    AssessorSpec,
    TunerSpec,
    build_dispatcher_args,
    build_dispatcher_command,
)
from trial_launch.errors import InvalidConfiguration


ARGS = {"optimize_mode": "maximize", "population_size": 3}


class TestDispatcherValidation(unittest.TestCase):
    def test_tuner_and_advisor_rejected(self) -> None:
        with self.assertRaises(InvalidConfiguration):
            build_dispatcher_args(TunerSpec("EvolutionTuner"), advisor=AdvisorSpec("Hyperband"), platform="posix")

    def test_assessor_and_advisor_rejected(self) -> None:
        with self.assertRaises(InvalidConfiguration):
            build_dispatcher_args(assessor=AssessorSpec("Medianstop"), advisor=AdvisorSpec("Hyperband"), platform="posix")

    def test_neither_rejected(self) -> None:
        with self.assertRaises(InvalidConfiguration):
            build_dispatcher_args(platform="posix")

    def test_assessor_alone_rejected(self) -> None:
        with self.assertRaises(InvalidConfiguration):
            build_dispatcher_args(assessor=AssessorSpec("Medianstop"), platform="posix")

    def test_invalid_configuration_is_value_error(self) -> None:
        with self.assertRaises(ValueError):
            build_dispatcher_args(platform="posix")


class TestDispatcherArgs(unittest.TestCase):
    def test_builtin_tuner_only(self) -> None:
        argv = build_dispatcher_args(TunerSpec("EvolutionTuner"), platform="posix")
        self.assertEqual(argv, ["python3", "-m", "nni", "--tuner_class_name", "EvolutionTuner"])
        cmd = build_dispatcher_command(TunerSpec("EvolutionTuner"), platform="posix")
        self.assertIn("--tuner_class_name EvolutionTuner", cmd)
        self.assertNotIn("--advisor_", cmd)

    def test_flags_come_first(self) -> None:
        argv = build_dispatcher_args(TunerSpec("T"), multi_phase=True, multi_thread=True, platform="posix")
        self.assertEqual(argv[:5], ["python3", "-m", "nni", "--multi_phase", "--multi_thread"])

    def test_interpreter_and_module_configurable(self) -> None:
        argv = build_dispatcher_args(TunerSpec("T"), platform="posix", python="python3.11", module="my_dispatch")
        self.assertEqual(argv[:3], ["python3.11", "-m", "my_dispatch"])

    def test_custom_tuner_with_assessor(self) -> None:
        tuner = TunerSpec("BestTuner", class_args=ARGS, code_dir="/tmp/mytuner", class_filename="best_tuner.py")
        assessor = AssessorSpec("Medianstop", class_args={"start_step": 5})
        argv = build_dispatcher_args(tuner, assessor, platform="posix")
        self.assertIn("--tuner_directory", argv)
        self.assertEqual(argv[argv.index("--tuner_directory") + 1], "/tmp/mytuner")
        self.assertEqual(argv[argv.index("--tuner_class_filename") + 1], "best_tuner.py")
        self.assertEqual(argv[argv.index("--assessor_class_name") + 1], "Medianstop")
        self.assertIn("--assessor_args", argv)
        self.assertNotIn("--assessor_directory", argv)
        # tuner group precedes assessor group
        self.assertLess(argv.index("--tuner_class_name"), argv.index("--assessor_class_name"))

    def test_short_optional_fields_dropped(self) -> None:
        argv = build_dispatcher_args(TunerSpec("T", code_dir=".", class_filename="x"), platform="posix")
        self.assertNotIn("--tuner_directory", argv)
        self.assertNotIn("--tuner_class_filename", argv)

        argv = build_dispatcher_args(TunerSpec("T", code_dir="ab", class_filename="ab"), platform="posix")
        self.assertIn("--tuner_directory", argv)
        self.assertIn("--tuner_class_filename", argv)

    def test_advisor_group(self) -> None:
        advisor = AdvisorSpec("Hyperband", class_args={"R": 60}, code_dir="/opt/adv", class_filename="adv.py")
        argv = build_dispatcher_args(advisor=advisor, platform="posix")
        self.assertEqual(
            argv[3:],
            [
                "--advisor_class_name",
                "Hyperband",
                "--advisor_args",
                json.dumps('{"R":60}'),
                "--advisor_directory",
                "/opt/adv",
                "--advisor_class_filename",
                "adv.py",
            ],
        )
        self.assertFalse(any(a.startswith("--tuner_") for a in argv))

    def test_args_omitted_when_none(self) -> None:
        argv = build_dispatcher_args(TunerSpec("T"), platform="posix")
        self.assertNotIn("--tuner_args", argv)


class TestArgsEncoding(unittest.TestCase):
    def test_posix_double_encoded(self) -> None:
        argv = build_dispatcher_args(TunerSpec("T", class_args=ARGS), platform="posix")
        token = argv[argv.index("--tuner_args") + 1]
        self.assertEqual(token, '"{\\"optimize_mode\\":\\"maximize\\",\\"population_size\\":3}"')
        # One json level survives the shell; the dispatcher decodes that level.
        cmd = build_dispatcher_command(TunerSpec("T", class_args=ARGS), platform="posix")
        shell_argv = shlex.split(cmd)
        decoded = json.loads(shell_argv[shell_argv.index("--tuner_args") + 1])
        self.assertEqual(decoded, ARGS)

    def test_native_shell_single_encoded(self) -> None:
        argv = build_dispatcher_args(TunerSpec("T", class_args=ARGS), platform="native-shell")
        token = argv[argv.index("--tuner_args") + 1]
        self.assertEqual(token, '{"optimize_mode":"maximize","population_size":3}')
        self.assertEqual(json.loads(token), ARGS)

    def test_encoding_has_no_spaces(self) -> None:
        nested = {"a": [1, 2, {"b": None}], "c": {"d": True}}
        for platform in ("posix", "native-shell"):
            argv = build_dispatcher_args(TunerSpec("T", class_args=nested), platform=platform)
            self.assertNotIn(" ", argv[argv.index("--tuner_args") + 1])


if __name__ == "__main__":
    unittest.main()
