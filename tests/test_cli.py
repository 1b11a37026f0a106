"""Tests for the click command line."""

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from qamap.cli import DEFAULT_CONFIG, cli
from qamap.models.config import QAMapConfig

from conftest import BASE_URL, fake_factory, make_app_site


@pytest.fixture
def runner(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return CliRunner()


@pytest.fixture
def app_site(monkeypatch):
    site = make_app_site()
    monkeypatch.setattr("qamap.pipeline.session_factory", lambda *args, **kwargs: fake_factory(site))
    monkeypatch.setattr("qamap.executor.adapter.session_factory", lambda *args, **kwargs: fake_factory(site))
    return site


def _init(runner) -> None:
    result = runner.invoke(cli, ["init", "--target", BASE_URL, "--name", "Example"])
    assert result.exit_code == 0, result.output


class TestInit:
    """Tests for the init command."""

    def test_writes_config(self, runner):
        _init(runner)
        cfg = QAMapConfig.load(DEFAULT_CONFIG)
        assert cfg.base_url == BASE_URL
        assert cfg.app_name == "Example"

    def test_declined_overwrite_keeps_file(self, runner):
        _init(runner)
        result = runner.invoke(cli, ["init", "--target", "https://other.example.com"], input="n\n")
        assert result.exit_code == 0
        assert QAMapConfig.load(DEFAULT_CONFIG).base_url == BASE_URL


class TestMissingInputs:
    """Commands fail cleanly when their inputs are missing."""

    def test_no_config(self, runner):
        result = runner.invoke(cli, ["map"])
        assert result.exit_code == 1
        assert "Config file not found" in result.output

    def test_generate_without_graph(self, runner):
        _init(runner)
        result = runner.invoke(cli, ["generate"])
        assert result.exit_code == 1
        assert "qamap map" in result.output

    def test_run_without_plan(self, runner):
        _init(runner)
        result = runner.invoke(cli, ["run"])
        assert result.exit_code == 1
        assert "qamap generate" in result.output

    def test_unknown_generator_type(self, runner):
        _init(runner)
        result = runner.invoke(cli, ["generate", "--type", "fuzz"])
        assert result.exit_code == 2


class TestWorkflow:
    """map -> generate -> run through the CLI against a fake browser."""

    def test_end_to_end(self, runner, app_site):
        _init(runner)

        mapped = runner.invoke(cli, ["map"])
        assert mapped.exit_code == 0, mapped.output
        assert Path(".qamap/graph/latest.json").exists()

        generated = runner.invoke(cli, ["generate", "--seed", "3", "--name", "nightly"])
        assert generated.exit_code == 0, generated.output
        plan_path = Path(".qamap/test-plans/nightly.json")
        assert json.loads(plan_path.read_text())["suites"]

        ran = runner.invoke(cli, ["run", "--plan-file", str(plan_path), "--sequential"])
        assert ran.exit_code == 0, ran.output
        assert "Run Complete" in ran.output
        assert list(Path(".qamap/reports").glob("run-*.json"))

    def test_failing_run_exits_nonzero(self, runner, app_site):
        _init(runner)
        cfg = QAMapConfig.load(DEFAULT_CONFIG)
        cfg.execution.retries = 0
        cfg.learning.auto_heal = False
        cfg.save(DEFAULT_CONFIG)
        runner.invoke(cli, ["map"])
        runner.invoke(cli, ["generate", "--type", "smoke", "--no-coverage"])
        app_site.broken.add('[data-testid="cta"]')

        result = runner.invoke(cli, ["run"])

        assert result.exit_code == 1
        assert "Failure Clusters" in result.output


class TestKnowledgeBaseCommands:
    """Tests for the kb subcommands."""

    def test_empty_kb(self, runner):
        _init(runner)
        failures = runner.invoke(cli, ["kb", "failures"])
        flaky = runner.invoke(cli, ["kb", "flaky", "--threshold", "0.1"])
        assert failures.exit_code == 0
        assert "No unresolved failures" in failures.output
        assert flaky.exit_code == 0
        assert "No flaky tests" in flaky.output
