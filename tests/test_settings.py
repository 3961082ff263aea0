"""Tests for blaze_tracker.settings — defaults, merging, providers."""

import json

from blaze_tracker.settings import (
    ExtractionSettings,
    FileSettings,
    StaticSettings,
    load_settings,
    save_settings,
    update_settings,
)


def test_defaults_when_file_missing(tmp_path):
    settings = load_settings(tmp_path / "settings.json")
    assert settings == ExtractionSettings()
    assert settings.max_concurrent_requests == 1
    assert settings.max_retries == 2
    assert "topic_tone_change" in settings.prompt_backoff


def test_load_merges_nested_track_with_defaults(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"track": {"relationships": False}, "max_tokens": 1000}))
    settings = load_settings(path)
    assert settings.track.relationships is False
    assert settings.track.characters is True
    assert settings.max_tokens == 1000


def test_update_merges_and_persists(tmp_path):
    path = tmp_path / "settings.json"
    update_settings(path, {"custom_temperatures": {"time_change": 0.1}})
    update_settings(path, {"custom_temperatures": {"outfit_change": 0.2}})
    settings = load_settings(path)
    assert settings.custom_temperatures == {"time_change": 0.1, "outfit_change": 0.2}


def test_update_ignores_unknown_keys(tmp_path):
    path = tmp_path / "settings.json"
    settings = update_settings(path, {"not_a_setting": 1, "max_retries": 0})
    assert settings.max_retries == 0
    assert "not_a_setting" not in json.loads(path.read_text())


def test_save_then_load(tmp_path):
    path = tmp_path / "nested" / "settings.json"
    save_settings(path, ExtractionSettings(profile_id="local", max_messages_to_send=10))
    loaded = load_settings(path)
    assert loaded.profile_id == "local"
    assert loaded.max_messages_to_send == 10


def test_track_enabled_unknown_category_is_off():
    settings = ExtractionSettings()
    assert settings.track.enabled("characters")
    assert not settings.track.enabled("weather")


def test_custom_prompt_overrides_template():
    settings = ExtractionSettings.model_validate({
        "custom_prompts": {
            "a": {"temperature": 0.2},
            "b": {"user_template": "hi"},
        },
    })
    assert not settings.custom_prompts["a"].overrides_template
    assert settings.custom_prompts["b"].overrides_template


class TestProviders:
    def test_static_provider_returns_same_object(self) -> None:
        settings = ExtractionSettings()
        assert StaticSettings(settings).get_settings() is settings

    def test_file_provider_rereads(self, tmp_path) -> None:
        path = tmp_path / "settings.json"
        provider = FileSettings(path)
        assert provider.get_settings().max_retries == 2
        update_settings(path, {"max_retries": 5})
        assert provider.get_settings().max_retries == 5
