# ABOUTME: Tests for the ralph-sprint command line entry point
# ABOUTME: Argument parsing, configuration layering, validation and exit codes

"""Tests for the CLI."""

import os
from unittest.mock import patch

import pytest

from ralph_sprint.__main__ import build_parser, load_config, main
from ralph_sprint.errors import PrerequisiteError


class TestParser:
    def test_defaults(self):
        args = build_parser().parse_args([])
        assert args.workspace is None
        assert args.max_iterations is None
        assert not args.once
        assert not args.cloud_enabled

    def test_flags(self):
        args = build_parser().parse_args(
            ["proj", "-n", "5", "-p", "2", "-m", "gpt-5", "--branch", "s1", "--pr", "-y",
             "--poll-interval", "10", "--verify-command", "pytest -q", "--once", "--cloud"]
        )
        assert args.workspace == "proj"
        assert args.max_iterations == 5
        assert args.max_passes == 2
        assert args.model == "gpt-5"
        assert args.open_pr and args.skip_confirm and args.once and args.cloud_enabled
        assert args.verify_command == "pytest -q"

    def test_rejects_non_integer(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["-n", "many"])


class TestLoadConfig:
    def test_flags_override_env_and_yaml(self, tmp_path):
        config_file = tmp_path / "ralph.yml"
        config_file.write_text("model: yaml-model\nmax_passes: 2\npoll_interval: 45\n")
        args = build_parser().parse_args([str(tmp_path), "-c", str(config_file), "-m", "flag-model"])

        with patch.dict(os.environ, {"RALPH_MODEL": "env-model", "MAX_PASSES": "4"}):
            config = load_config(args)

        assert config.model == "flag-model"
        assert config.max_passes == 4
        assert config.poll_interval == 45
        assert config.workspace == str(tmp_path)

    def test_unset_switches_keep_yaml_values(self, tmp_path):
        config_file = tmp_path / "ralph.yml"
        config_file.write_text("once: true\n")
        args = build_parser().parse_args(["-c", str(config_file)])

        with patch.dict(os.environ, {}, clear=True):
            assert load_config(args).once is True


class TestMain:
    def test_invalid_configuration_exits_1(self, tmp_path):
        with patch.dict(os.environ, {}, clear=True):
            assert main([str(tmp_path), "--pr", "-y"]) == 1

    def test_missing_config_file_exits_1(self, tmp_path):
        assert main([str(tmp_path), "-c", str(tmp_path / "missing.yml"), "-y"]) == 1

    @patch("ralph_sprint.__main__.RalphLogger.initialize")
    @patch("ralph_sprint.__main__.RalphOrchestrator")
    def test_runs_orchestrator(self, orchestrator_cls, _logging, tmp_path):
        orchestrator_cls.return_value.run.return_value = 0
        with patch.dict(os.environ, {}, clear=True):
            assert main([str(tmp_path), "-y", "--once"]) == 0

        config = orchestrator_cls.call_args.args[0]
        assert config.once is True
        assert config.skip_confirm is True

    @patch("ralph_sprint.__main__.RalphLogger.initialize")
    @patch("ralph_sprint.__main__.RalphOrchestrator")
    def test_prerequisite_failure_exits_1(self, orchestrator_cls, _logging, tmp_path):
        orchestrator_cls.return_value.run.side_effect = PrerequisiteError(
            "git", "Not a git repository", "Run git init"
        )
        with patch.dict(os.environ, {}, clear=True):
            assert main([str(tmp_path), "-y"]) == 1

    @patch("ralph_sprint.__main__.RalphLogger.initialize")
    @patch("ralph_sprint.__main__.RalphOrchestrator")
    def test_declined_confirmation(self, orchestrator_cls, _logging, tmp_path):
        with patch.dict(os.environ, {}, clear=True), patch("builtins.input", return_value="n"):
            assert main([str(tmp_path)]) == 0
        orchestrator_cls.assert_not_called()

    @patch("ralph_sprint.__main__.RalphLogger.initialize")
    @patch("ralph_sprint.__main__.RalphOrchestrator")
    def test_confirmation_shows_todo(self, orchestrator_cls, _logging, tmp_path):
        (tmp_path / "ralph-todo.json").write_text('[{"description": "Add login"}]')
        orchestrator_cls.return_value.run.return_value = 0
        with patch.dict(os.environ, {}, clear=True), patch("builtins.input", return_value="y"):
            assert main([str(tmp_path)]) == 0
        orchestrator_cls.assert_called_once()
