"""Tests for configuration storage and the settings record."""
import json

import pytest

from ucx_sync.config import DEFAULT_NODES, MB, Config, SyncSettings


@pytest.fixture
def config_path(tmp_path):
    return tmp_path / "config.json"


class TestConfig:
    def test_creates_default_file(self, config_path):
        cfg = Config(config_path)
        assert config_path.exists()
        assert cfg.nodes == DEFAULT_NODES
        assert cfg.shares == ["E$", "F$"]
        assert cfg.idle_timeout_minutes == 5
        assert cfg.max_parallelism == 8
        assert not cfg.is_configured()

    def test_round_trip(self, config_path):
        cfg = Config(config_path)
        cfg.project_name = "  Test1 "
        cfg.destination_root = "/data"
        cfg.save()
        again = Config(config_path)
        assert again.project_name == "Test1"
        assert again.is_configured()

    def test_missing_keys_take_defaults(self, config_path):
        config_path.write_text(json.dumps({"project_name": "Test1"}), encoding="utf-8")
        cfg = Config(config_path)
        assert cfg.project_name == "Test1"
        assert cfg.retry_attempts == 3

    @pytest.mark.parametrize("content", ["{not json", "[1, 2, 3]"])
    def test_corrupt_file_falls_back_to_defaults(self, config_path, content):
        config_path.write_text(content, encoding="utf-8")
        cfg = Config(config_path)
        assert cfg.project_name == ""
        assert cfg.max_parallelism == 8

    def test_setters_clamp(self, config_path):
        cfg = Config(config_path)
        cfg.max_parallelism = 500
        cfg.idle_timeout_minutes = 0
        cfg.poll_interval = 1
        cfg.retry_attempts = 0
        cfg.safety_margin_mb = -5
        assert cfg.max_parallelism == 64
        assert cfg.idle_timeout_minutes == 1
        assert cfg.poll_interval == 5
        assert cfg.retry_attempts == 1
        assert cfg.safety_margin_mb == 0

    def test_node_list_is_cleaned(self, config_path):
        cfg = Config(config_path)
        cfg.nodes = [" WU01 ", "", "CU"]
        assert cfg.nodes == ["WU01", "CU"]

    def test_to_settings(self, config_path):
        cfg = Config(config_path)
        cfg.project_name = "Test1"
        cfg.destination_root = "/data"
        cfg.nodes = ["WU01", "WU02"]
        settings = cfg.to_settings()
        assert settings.nodes == ("WU01", "WU02")
        assert settings.safety_margin_bytes == 100 * MB
        assert settings.min_free_bytes == 50 * MB
        assert settings.capture_quorum == 4
        assert settings.idle_timeout_seconds == 300


class TestSyncSettings:
    def test_quorum_override(self):
        settings = SyncSettings(
            nodes=("WU01",), shares=("E$", "F$"), destination_root="/d",
            project_name="P", expected_capture_sources=1,
        )
        assert settings.source_count == 2
        assert settings.capture_quorum == 1

    def test_destination_dir(self, tmp_path):
        settings = SyncSettings(
            nodes=("WU01",), shares=("E$",), destination_root=str(tmp_path), project_name="P",
        )
        assert settings.destination_dir == tmp_path / "P"

    def test_immutable(self):
        settings = SyncSettings(nodes=(), shares=(), destination_root="", project_name="")
        with pytest.raises(Exception):
            settings.project_name = "other"
