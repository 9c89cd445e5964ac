"""
ralph-orchestrator — unit tests for config loader

Purpose
- Validate deterministic config loading from defaults, TOML, env overrides, and CLI overrides.

What this test file should cover
- Precedence: CLI > env > file > defaults.
- Deterministic env var path mapping and type coercion.
- Path normalization relative to the config file.
- Redacted effective config dumping.

Functional requirements
- Works without provider keys or network.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from ralph_orchestrator.config.loader import (
    ConfigLoadError,
    dump_effective_config,
    load_config,
    load_runtime_config,
)
from ralph_orchestrator.config.schema import ConfigValidationError, OnFailure


def _write_config(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


@pytest.mark.unit
def test_defaults_without_file(tmp_path: Path) -> None:
    config = load_config(base_dir=tmp_path, environ={})

    assert config["loop"]["max_iterations_per_task"] == 10
    assert config["git"]["commit_prefix"] == "RALPH-"
    assert config["paths"]["policy"] == (tmp_path.resolve() / "ralph.policy.json").as_posix()


@pytest.mark.unit
def test_precedence_cli_over_env_over_file(tmp_path: Path) -> None:
    config_path = tmp_path / "ralph.toml"
    _write_config(
        config_path,
        "[loop]\nmax_iterations_per_task = 4\nmax_tasks_per_run = 7\non_failure = \"stop\"\n",
    )

    config = load_config(
        config_path,
        environ={"RALPH_LOOP_MAX_TASKS_PER_RUN": "9", "RALPH_LOOP_DRY_RUN": "yes"},
        cli_overrides={"loop.max_tasks_per_run": 2, "loop.task_filter": None},
    )

    assert config["loop"]["max_iterations_per_task"] == 4
    assert config["loop"]["max_tasks_per_run"] == 2
    assert config["loop"]["dry_run"] is True
    assert config["loop"]["on_failure"] == "stop"
    assert config["loop"]["task_filter"] == ""


@pytest.mark.unit
def test_env_list_and_float_coercion(tmp_path: Path) -> None:
    config = load_config(
        base_dir=tmp_path,
        environ={
            "RALPH_SANDBOX_ALLOWED_COMMANDS": "npm test, npm run lint,,",
            "RALPH_SANDBOX_TIMEOUT_SECONDS": "2.5",
        },
    )

    assert config["sandbox"]["allowed_commands"] == ["npm test", "npm run lint"]
    assert config["sandbox"]["timeout_seconds"] == 2.5


@pytest.mark.unit
def test_bad_env_value_is_load_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="RALPH_LOOP_MAX_ITERATIONS_PER_TASK"):
        load_config(base_dir=tmp_path, environ={"RALPH_LOOP_MAX_ITERATIONS_PER_TASK": "many"})


@pytest.mark.unit
def test_paths_are_relative_to_config_file(tmp_path: Path) -> None:
    config_path = tmp_path / "conf" / "ralph.toml"
    _write_config(config_path, '[paths]\npolicy = "../policies/delivery.yaml"\n')

    config = load_config(config_path, environ={})

    expected = (tmp_path.resolve() / "policies" / "delivery.yaml").as_posix()
    assert config["paths"]["policy"] == expected
    assert config["state"]["dir"] == (tmp_path.resolve() / "conf" / "state").as_posix()


@pytest.mark.unit
def test_explicit_missing_file_and_invalid_toml(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="not found"):
        load_config(tmp_path / "absent.toml", environ={})

    broken = tmp_path / "broken.toml"
    _write_config(broken, "[loop\n")
    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(broken, environ={})


@pytest.mark.unit
def test_invalid_values_raise_validation_error(tmp_path: Path) -> None:
    config_path = tmp_path / "ralph.toml"
    _write_config(config_path, "[loop]\non_failure = \"retry\"\nparallelism = 0\n")

    with pytest.raises(ConfigValidationError) as excinfo:
        load_config(config_path, environ={})

    assert {issue.path for issue in excinfo.value.issues} == {"loop.on_failure", "loop.parallelism"}


@pytest.mark.unit
def test_llm_secret_env_is_required_only_when_enabled(tmp_path: Path) -> None:
    config_path = tmp_path / "conf" / "llm.toml"
    _write_config(config_path, '[llm]\nenabled = true\napi_key_env = "RALPH_TEST_KEY"\n')

    assert load_config(base_dir=tmp_path, environ={}, require_secret_env_values=True)
    with pytest.raises(ConfigLoadError, match="RALPH_TEST_KEY"):
        load_config(config_path, environ={}, require_secret_env_values=True)
    runtime = load_runtime_config(config_path, environ={"RALPH_TEST_KEY": "sk-test"})
    assert runtime.llm.enabled


@pytest.mark.unit
def test_runtime_config_view(tmp_path: Path) -> None:
    config_path = tmp_path / "ralph.toml"
    _write_config(
        config_path,
        '[loop]\non_failure = "stop"\ntask_filter = "T-7"\n'
        '[sandbox]\ndenied_commands = ["curl"]\n',
    )

    runtime = load_runtime_config(config_path, environ={})

    assert runtime.loop.on_failure is OnFailure.STOP
    assert runtime.loop.task_filter == "T-7"
    assert runtime.sandbox.denied_commands == ("curl",)
    assert load_runtime_config(base_dir=tmp_path / "x", environ={}).loop.task_filter is None


@pytest.mark.unit
def test_effective_config_dump_is_deterministic(tmp_path: Path) -> None:
    first = dump_effective_config(load_config(base_dir=tmp_path, environ={}))
    second = dump_effective_config(load_config(base_dir=tmp_path, environ={}))

    assert first == second
    assert json.loads(first)["llm"]["api_key_env"] == "ANTHROPIC_API_KEY"
