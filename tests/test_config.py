"""
Tests for analyzer configuration loading.
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from loudmatch.config import AnalyzerConfig
from loudmatch.errors import ConfigLoadError


class TestDefaults:

    def test_bs1770_defaults(self):
        config = AnalyzerConfig()
        assert config.reference_sample_rate == 48000
        assert config.block_seconds == 0.4
        assert config.step_seconds == 0.1
        assert config.absolute_gate_lufs == -70.0
        assert config.relative_gate_lu == 10.0
        assert config.lufs_offset == -0.691
        assert config.cap_db == 12.0
        assert config.offload_mode == "process"

    def test_step_larger_than_block_rejected(self):
        with pytest.raises(ConfigLoadError):
            AnalyzerConfig(block_seconds=0.1, step_seconds=0.4)

    def test_negative_cap_rejected(self):
        with pytest.raises(ConfigLoadError):
            AnalyzerConfig(cap_db=-1)

    def test_unknown_offload_mode_rejected(self):
        with pytest.raises(ConfigLoadError):
            AnalyzerConfig(offload_mode="gpu")


class TestYaml:

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "loudmatch.yaml"
        path.write_text("cap_db: 6\noffload_mode: inline\nworker_timeout: 5\n", encoding="utf-8")

        config = AnalyzerConfig.from_yaml(path)

        assert config.cap_db == 6
        assert config.offload_mode == "inline"
        assert config.worker_timeout == 5

    def test_empty_yaml_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert AnalyzerConfig.from_yaml(path) == AnalyzerConfig()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigLoadError, match="not found"):
            AnalyzerConfig.from_yaml(tmp_path / "nope.yaml")

    def test_unreadable_path(self, tmp_path):
        with pytest.raises(ConfigLoadError, match="Failed to read"):
            AnalyzerConfig.from_yaml(tmp_path)

    def test_unknown_key(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("loudness_war: true\n", encoding="utf-8")
        with pytest.raises(ConfigLoadError, match="loudness_war"):
            AnalyzerConfig.from_yaml(path)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("cap_db: [1, 2\n", encoding="utf-8")
        with pytest.raises(ConfigLoadError):
            AnalyzerConfig.from_yaml(path)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n", encoding="utf-8")
        with pytest.raises(ConfigLoadError, match="mapping"):
            AnalyzerConfig.from_yaml(path)


class TestEnv:

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("LOUDMATCH_CAP_DB", "9.5")
        monkeypatch.setenv("LOUDMATCH_OFFLOAD", "OFF")
        monkeypatch.setenv("LOUDMATCH_WORKER_TIMEOUT", "0")
        monkeypatch.setenv("LOUDMATCH_VERBOSE", "yes")

        config = AnalyzerConfig.from_env()

        assert config.cap_db == 9.5
        assert config.offload_mode == "off"
        assert config.worker_timeout is None
        assert config.verbose is True

    def test_env_keeps_base_values(self, monkeypatch):
        monkeypatch.delenv("LOUDMATCH_CAP_DB", raising=False)
        base = AnalyzerConfig(cap_db=3.0)
        assert AnalyzerConfig.from_env(base).cap_db == 3.0

    def test_invalid_env_value(self, monkeypatch):
        monkeypatch.setenv("LOUDMATCH_CAP_DB", "loud")
        with pytest.raises(ConfigLoadError):
            AnalyzerConfig.from_env()
