"""Unit tests for configuration loading and validated settings."""

import pytest
import yaml

from livescribe.config import EngineSettings, LiveScribeConfig, RecoverySettings


@pytest.fixture
def config_file(tmp_path):
    def _write(data):
        path = tmp_path / "livescribe.yaml"
        path.write_text(yaml.safe_dump(data), encoding="utf-8")
        return path
    return _write


@pytest.mark.unit
class TestLiveScribeConfig:

    def test_get_with_dot_notation(self, config_file):
        config = LiveScribeConfig(str(config_file({"session": {"max_duration_seconds": 120}})))

        assert config.get("session.max_duration_seconds") == 120
        assert config.get("session.missing", "fallback") == "fallback"
        assert config.get("nope.nothing") is None

    def test_set_creates_sections(self, config_file):
        config = LiveScribeConfig(str(config_file({"audio": {"channels": 1}})))
        config.set("transcription.backend", "whisper")

        assert config.get("transcription.backend") == "whisper"

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            LiveScribeConfig(str(tmp_path / "absent.yaml"))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "livescribe.yaml"
        path.write_text("audio: [unclosed", encoding="utf-8")
        with pytest.raises(ValueError):
            LiveScribeConfig(str(path))

    def test_empty_file(self, tmp_path):
        path = tmp_path / "livescribe.yaml"
        path.write_text("", encoding="utf-8")
        with pytest.raises(ValueError):
            LiveScribeConfig(str(path))

    def test_no_file_found_uses_defaults(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        config = LiveScribeConfig()

        assert config.config_file is None
        assert config.config == {}

    def test_relative_paths_resolved_against_config_dir(self, config_file, tmp_path):
        config = LiveScribeConfig(str(config_file({
            "google_cloud": {"credentials_path": "creds/key.json"},
            "logging": {"file_path": "logs/app.log"},
        })))

        assert config.get("google_cloud.credentials_path") == str(tmp_path / "creds/key.json")
        assert config.get("logging.file_path") == str(tmp_path / "logs/app.log")

    def test_google_credentials_must_exist(self, config_file, tmp_path):
        config = LiveScribeConfig(str(config_file({"google_cloud": {"credentials_path": "missing.json"}})))
        with pytest.raises(FileNotFoundError):
            config.get_google_credentials_path()

        (tmp_path / "missing.json").write_text("{}", encoding="utf-8")
        assert config.get_google_credentials_path().endswith("missing.json")

    def test_openai_key_from_environment(self, config_file, monkeypatch):
        config = LiveScribeConfig(str(config_file({"audio": {}})))

        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ValueError):
            config.get_openai_api_key()

        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        assert config.get_openai_api_key() == "sk-test"

        config.set("openai.api_key", "sk-config")
        assert config.get_openai_api_key() == "sk-config"


@pytest.mark.unit
class TestEngineSettings:

    def test_defaults(self):
        settings = EngineSettings()

        assert settings.audio.strategy == "microphone"
        assert settings.dispatch.backend == "google"
        assert settings.dispatch.flush_interval_seconds == 5.0
        assert settings.dispatch.min_chunk_bytes == 1000
        assert settings.recovery.max_duration_seconds == 600.0
        assert settings.recovery.max_restart_attempts == 10
        assert settings.recovery.restart_delays["network"] == 3.0

    def test_from_config_sections(self, config_file):
        config = LiveScribeConfig(str(config_file({
            "audio": {"strategy": "continuous", "sample_rate": 48000},
            "transcription": {"backend": "whisper", "chunk_timeout_seconds": 20},
            "session": {"max_duration_seconds": 90, "restart_delays": {"no-speech": 0.5}},
        })))
        settings = EngineSettings.from_config(config)

        assert settings.audio.strategy == "continuous"
        assert settings.audio.sample_rate == 48000
        assert settings.dispatch.backend == "whisper"
        assert settings.dispatch.chunk_timeout_seconds == 20
        assert settings.recovery.max_duration_seconds == 90
        assert settings.recovery.restart_delays["no-speech"] == 0.5
        assert settings.recovery.restart_delays["ended"] == 0.1

    @pytest.mark.parametrize("section,values", [
        ("audio", {"sample_rate": 12345}),
        ("audio", {"channels": 6}),
        ("audio", {"strategy": "telepathy"}),
        ("transcription", {"backend": "carrier-pigeon"}),
        ("transcription", {"flush_interval_seconds": 0}),
        ("session", {"max_restart_attempts": 0}),
        ("session", {"restart_delays": {"bogus": 1.0}}),
        ("session", {"restart_delays": {"network": -1.0}}),
    ])
    def test_invalid_values_rejected(self, config_file, section, values):
        config = LiveScribeConfig(str(config_file({section: values})))
        with pytest.raises(ValueError):
            EngineSettings.from_config(config)

    def test_recovery_settings_merge_delays(self):
        settings = RecoverySettings(restart_delays={"ended": 0.5})
        assert settings.restart_delays == {
            "no-speech": 1.0, "audio-capture": 1.0, "network": 3.0, "ended": 0.5,
        }
