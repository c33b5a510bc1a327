"""
Tests for configuration loading and layering.
"""

import json
import os

import pytest
from pydantic import ValidationError

from folio.core.config import FolioConfig, clear_cache, load_config, load_layered_env
from folio.core.config.loader import apply_env_overrides, deep_merge, load_json_file


def write_json(path, data) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data))


class TestDeepMerge:
    """Test the recursive dictionary merge."""

    def test_nested_override(self) -> None:
        """Test that nested keys merge and override."""
        base = {"sync": {"grace_delay": 1, "pending_timeout": 10}, "audit": {"max_execution_log": 5}}
        result = deep_merge(base, {"sync": {"pending_timeout": 3}})
        assert result == {
            "sync": {"grace_delay": 1, "pending_timeout": 3},
            "audit": {"max_execution_log": 5},
        }
        assert base["sync"]["pending_timeout"] == 10

    def test_non_dict_replaces(self) -> None:
        """Test that lists and scalars replace wholesale."""
        assert deep_merge({"users": [1, 2]}, {"users": [3]}) == {"users": [3]}


class TestLoadJsonFile:
    """Test tolerant JSON reading."""

    def test_missing(self, tmp_path) -> None:
        """Test that missing files yield None."""
        assert load_json_file(tmp_path / "nope.json") is None

    def test_broken_and_non_object(self, tmp_path) -> None:
        """Test that unreadable or non-object files are ignored."""
        broken = tmp_path / "broken.json"
        broken.write_text("{not json")
        listing = tmp_path / "list.json"
        listing.write_text("[1, 2]")
        assert load_json_file(broken) is None
        assert load_json_file(listing) is None


class TestEnvOverrides:
    """Test FOLIO_* overrides."""

    def test_overrides(self, clean_env) -> None:
        """Test every supported variable."""
        clean_env.setenv("FOLIO_TICK_SECONDS", "30")
        clean_env.setenv("FOLIO_PENDING_TIMEOUT", "2.5")
        clean_env.setenv("FOLIO_EFFORT_THRESHOLD", "20")
        clean_env.setenv("FOLIO_BACKEND", "memory")
        result = apply_env_overrides({"sync": {"grace_delay": 0.1}})
        assert result["scheduler"] == {"tick_seconds": 30.0}
        assert result["sync"] == {"grace_delay": 0.1, "pending_timeout": 2.5}
        assert result["validation"] == {"effort_threshold_percent": 20.0}
        assert result["storage"] == {"backend": "memory"}

    @pytest.mark.parametrize("raw", ["abc", "0", "-5"])
    def test_invalid_values_are_ignored(self, clean_env, raw) -> None:
        """Test that unusable numbers leave the config alone."""
        clean_env.setenv("FOLIO_PENDING_TIMEOUT", raw)
        assert apply_env_overrides({}) == {}


class TestLoadConfig:
    """Test the full layering chain."""

    def test_defaults(self, isolated_config, tmp_path) -> None:
        """Test loading with no files at all."""
        config = load_config(tmp_path, use_cache=False)
        assert config.scheduler.tick_seconds == 60.0
        assert config.sync.pending_timeout == 10.0
        assert config.storage.records_file == ".folio/records.json"
        assert config.workflows == []

    def test_precedence(self, isolated_config, tmp_path, monkeypatch) -> None:
        """Test defaults < user < project < env."""
        write_json(
            isolated_config / "folio" / "config.json",
            {"sync": {"grace_delay": 1.0, "pending_timeout": 20}, "audit": {"max_execution_log": 3}},
        )
        project = tmp_path / "project"
        write_json(project / ".folio.json", {"sync": {"pending_timeout": 30}})
        monkeypatch.setenv("FOLIO_EFFORT_THRESHOLD", "25")
        config = load_config(project, use_cache=False)

        assert config.sync.grace_delay == 1.0
        assert config.sync.pending_timeout == 30.0
        assert config.audit.max_execution_log == 3
        assert config.validation.effort_threshold_percent == 25.0

    def test_cache(self, isolated_config, tmp_path) -> None:
        """Test that the loaded config is cached until cleared."""
        first = load_config(tmp_path)
        write_json(tmp_path / ".folio.json", {"audit": {"max_execution_log": 2}})
        assert load_config(tmp_path) is first
        clear_cache()
        assert load_config(tmp_path).audit.max_execution_log == 2

    def test_workflows_from_config_are_user_workflows(self, isolated_config, tmp_path) -> None:
        """Test that config files cannot declare system workflows."""
        write_json(
            tmp_path / ".folio.json",
            {
                "workflows": [
                    {
                        "id": "sneaky",
                        "name": "Sneaky",
                        "system": True,
                        "read_only": True,
                        "trigger": {"kind": "on_create"},
                        "action": {"kind": "transition_status"},
                    }
                ]
            },
        )
        [workflow] = load_config(tmp_path, use_cache=False).workflows
        assert workflow.id == "sneaky"
        assert workflow.system is False
        assert workflow.read_only is False

    def test_invalid_values_raise(self, isolated_config, tmp_path) -> None:
        """Test that out-of-range settings fail validation."""
        write_json(tmp_path / ".folio.json", {"scheduler": {"tick_seconds": 300}})
        with pytest.raises(ValidationError):
            load_config(tmp_path, use_cache=False)

    def test_unknown_keys_are_kept(self) -> None:
        """Test forward compatibility with newer config files."""
        config = FolioConfig(future_setting=True)
        assert config.model_extra == {"future_setting": True}


class TestLoadLayeredEnv:
    """Test .env file loading."""

    def test_project_overrides_user_but_not_shell(self, clean_env, tmp_path) -> None:
        """Test the .env precedence chain."""
        user_env = tmp_path / "user.env"
        user_env.write_text("FOLIO_USER=u_user\nFOLIO_BACKEND=json\n")
        project_env = tmp_path / "project.env"
        project_env.write_text("FOLIO_USER=u_project\nFOLIO_TICK_SECONDS=15\n")
        # A private copy of the environment keeps .env values out of other tests
        clean_env.setattr(os, "environ", {**os.environ, "FOLIO_TICK_SECONDS": "45"})

        loaded = load_layered_env(
            user_env_paths=[user_env],
            project_env_paths=[project_env],
        )

        assert loaded == ["FOLIO_BACKEND", "FOLIO_USER"]
        assert os.environ["FOLIO_USER"] == "u_project"
        assert os.environ["FOLIO_BACKEND"] == "json"
        assert os.environ["FOLIO_TICK_SECONDS"] == "45"
