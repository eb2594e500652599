"""Tests for api/settings module."""

from __future__ import annotations

import logging
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from api.settings import Settings, get_settings


def load(env: dict[str, str]) -> Settings:
    with patch.dict("os.environ", env, clear=True):
        return Settings(_env_file=None)


class TestDefaults:
    def test_background_job_defaults(self):
        settings = load({"POCKETBASE_ADMIN_PASSWORD": "s3cret-value"})

        assert settings.scheduler_enabled is True
        assert settings.detection_interval_seconds == 21600
        assert settings.timeout_sweep_interval_seconds == 1800
        assert settings.detection_max_cycle_size == 5
        assert settings.detection_top_n == 50
        assert settings.tz == "Africa/Nairobi"

    def test_allowed_origins_are_split(self):
        settings = load({"ALLOWED_ORIGINS": " https://vitabu.app , ,http://localhost:5173"})

        assert settings.allowed_origins == ["https://vitabu.app", "http://localhost:5173"]


class TestEnvironmentOverrides:
    def test_job_settings(self):
        settings = load(
            {
                "SCHEDULER_ENABLED": "false",
                "DETECTION_INTERVAL_SECONDS": "60",
                "DETECTION_MAX_CYCLE_SIZE": "3",
                "DETECTION_TOP_N": "10",
            }
        )

        assert settings.scheduler_enabled is False
        assert settings.detection_interval_seconds == 60
        assert settings.detection_max_cycle_size == 3
        assert settings.detection_top_n == 10

    @pytest.mark.parametrize(
        "name,value",
        [
            ("DETECTION_MAX_CYCLE_SIZE", "6"),
            ("DETECTION_MAX_CYCLE_SIZE", "1"),
            ("DETECTION_TOP_N", "0"),
            ("TIMEOUT_SWEEP_INTERVAL_SECONDS", "0"),
        ],
    )
    def test_out_of_range_values_are_rejected(self, name: str, value: str):
        with pytest.raises(ValidationError):
            load({name: value})


class TestAdminPassword:
    @pytest.mark.parametrize("password", ["", "changeme", "admin"])
    def test_insecure_password_warns(self, password: str, caplog):
        with caplog.at_level(logging.WARNING, logger="api.settings"):
            load({"POCKETBASE_ADMIN_PASSWORD": password})

        assert "SECURITY WARNING" in caplog.text

    def test_strong_password_is_quiet(self, caplog):
        with caplog.at_level(logging.WARNING, logger="api.settings"):
            settings = load({"POCKETBASE_ADMIN_PASSWORD": "long-random-value"})

        assert settings.pocketbase_admin_password == "long-random-value"
        assert caplog.text == ""


class TestGetSettings:
    def test_cached(self):
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()
