"""Tests for engine settings."""
import pytest

from topocraft.config import EngineSettings, load_settings
from topocraft.errors import ValidationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in (
        "TOPOCRAFT_MAX_CONCURRENCY",
        "TOPOCRAFT_RETRY",
        "TOPOCRAFT_RETRY_LIMIT",
        "TOPOCRAFT_STOP_ON_ERROR",
        "TOPOCRAFT_AUDIT_LOG",
    ):
        monkeypatch.delenv(var, raising=False)


class TestEngineSettings:
    """Tests for EngineSettings."""

    def test_defaults(self):
        settings = EngineSettings()

        assert settings.max_concurrent_operations == 4
        assert settings.retry_transient_errors is False
        assert settings.retries == 0
        assert settings.replace_on_conflict is True
        assert settings.audit_log is None

    def test_retries_only_when_enabled(self):
        assert EngineSettings(retry_limit=5).retries == 0
        assert EngineSettings(retry_transient_errors=True, retry_limit=5).retries == 5

    @pytest.mark.parametrize("value", [0, -1, "4"])
    def test_invalid_concurrency(self, value):
        with pytest.raises(ValidationError):
            EngineSettings(max_concurrent_operations=value)

    def test_invalid_waits(self):
        with pytest.raises(ValidationError):
            EngineSettings(retry_min_wait=5, retry_max_wait=1)

    def test_merged_ignores_none(self):
        settings = EngineSettings().merged(max_concurrent_operations=None, stop_on_error=True)

        assert settings.max_concurrent_operations == 4
        assert settings.stop_on_error is True

    def test_merged_rejects_unknown(self):
        with pytest.raises(ValidationError) as exc:
            EngineSettings().merged(parallelism=3)
        assert "parallelism" in str(exc.value)

    def test_to_dict(self):
        assert EngineSettings().to_dict()["retry_limit"] == 3


class TestLoading:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("TOPOCRAFT_MAX_CONCURRENCY", "8")
        monkeypatch.setenv("TOPOCRAFT_RETRY", "yes")
        monkeypatch.setenv("TOPOCRAFT_RETRY_LIMIT", "2")
        monkeypatch.setenv("TOPOCRAFT_STOP_ON_ERROR", "1")

        settings = EngineSettings.from_env()

        assert settings.max_concurrent_operations == 8
        assert settings.retry_transient_errors is True
        assert settings.retries == 2
        assert settings.stop_on_error is True

    def test_from_env_bad_number(self, monkeypatch):
        monkeypatch.setenv("TOPOCRAFT_MAX_CONCURRENCY", "many")

        with pytest.raises(ValidationError):
            EngineSettings.from_env()

    def test_from_file(self, tmp_path):
        path = tmp_path / "stack.yaml"
        path.write_text(
            "topology:\n"
            "  name: demo\n"
            "  image: nginx\n"
            "settings:\n"
            "  max_concurrent_operations: 2\n"
            "  stop_on_error: true\n"
        )

        settings = EngineSettings.from_file(path)

        assert settings.max_concurrent_operations == 2
        assert settings.stop_on_error is True

    def test_from_file_missing(self, tmp_path):
        assert EngineSettings.from_file(tmp_path / "nope.yaml") == EngineSettings()

    def test_from_mapping_rejects_non_mapping(self):
        with pytest.raises(ValidationError):
            EngineSettings.from_mapping(["max_concurrent_operations"])

    def test_precedence(self, tmp_path, monkeypatch):
        """defaults < file < environment < explicit overrides"""
        path = tmp_path / "stack.yaml"
        path.write_text(
            "settings:\n"
            "  max_concurrent_operations: 2\n"
            "  retry_limit: 7\n"
            "  stop_on_error: true\n"
        )
        monkeypatch.setenv("TOPOCRAFT_MAX_CONCURRENCY", "6")
        monkeypatch.setenv("TOPOCRAFT_RETRY_LIMIT", "5")

        settings = load_settings(path, retry_limit=1, stop_on_error=None)

        assert settings.max_concurrent_operations == 6
        assert settings.retry_limit == 1
        assert settings.stop_on_error is True
