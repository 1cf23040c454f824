"""Tests for pipeline configuration loading."""

from __future__ import annotations

import json
import os

import pytest

from threshold.config import ConfigLoader, PIPELINE_CONFIG_PATH, load_pipeline_config
from threshold.config.env import parse_bool
from threshold.error_handling.errors import ConfigurationError

pytestmark = pytest.mark.usefixtures("add_repo_to_path")


@pytest.mark.unit
def test_defaults(pipeline_config):
    assert pipeline_config.service.base_url == "https://api.worldlabs.ai/marble/v1"
    assert pipeline_config.service.api_key_header == "WLT-Api-Key"
    assert [relay.name for relay in pipeline_config.relays] == ["corsproxy", "allorigins"]
    assert pipeline_config.relays[0].prefix == "https://corsproxy.io/?"
    assert pipeline_config.polling.interval_seconds == 10.0
    assert pipeline_config.polling.deadline_seconds == 900.0
    assert pipeline_config.polling.terminal_status_codes == [401, 403]
    assert {404, 502, 522} <= set(pipeline_config.polling.transient_status_codes)
    assert pipeline_config.fetch.min_bytes == 2000
    assert pipeline_config.resolution.category_priority == ["splat", "mesh", "panorama", "preview_image"]
    assert pipeline_config.fallback.max_depth == 1
    assert len(pipeline_config.themes) == 10


@pytest.mark.unit
def test_env_overrides_use_section_prefixes():
    env = {
        "THRESHOLD_POLLING_INTERVAL_SECONDS": "5",
        "THRESHOLD_CONCEPT_IMAGE_ENABLED": "false",
        "THRESHOLD_FETCH_MIN_BYTES": "4096",
        "UNRELATED_POLLING_INTERVAL_SECONDS": "1",
    }

    config = ConfigLoader.load_pipeline_config(use_cache=False, env=env)

    assert config.polling.interval_seconds == 5
    assert config.concept_image.enabled is False
    assert config.fetch.min_bytes == 4096


@pytest.mark.unit
def test_env_override_for_relay_list():
    env = {"THRESHOLD_RELAYS": json.dumps([{"name": "mirror", "prefix": "https://relay.example.com/?u="}])}

    config = ConfigLoader.load_pipeline_config(use_cache=False, env=env)

    assert [relay.name for relay in config.relays] == ["mirror"]


@pytest.mark.unit
def test_programmatic_overrides_are_deep_merged():
    config = ConfigLoader.load_pipeline_config(
        use_cache=False, env={}, overrides={"polling": {"deadline_seconds": 1200}}
    )

    assert config.polling.deadline_seconds == 1200
    assert config.polling.interval_seconds == 10.0


@pytest.mark.unit
def test_validation_reports_bad_keys():
    with pytest.raises(ConfigurationError) as excinfo:
        ConfigLoader.load_pipeline_config(
            use_cache=False,
            env={},
            overrides={"polling": {"interval_seconds": 0}, "resolution": {"category_priority": ["voxels"]}},
        )

    assert "polling.interval_seconds" in excinfo.value.message
    assert "resolution.category_priority" in excinfo.value.message


@pytest.mark.unit
def test_unknown_option_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        ConfigLoader.load_pipeline_config(use_cache=False, env={}, overrides={"polling": {"bogus": 1}})


@pytest.mark.unit
def test_custom_config_file(tmp_path):
    data = json.loads(PIPELINE_CONFIG_PATH.read_text())
    data["themes"] = ["Only Theme"]
    path = tmp_path / "pipeline_config.json"
    path.write_text(json.dumps(data))

    config = ConfigLoader.load_pipeline_config(config_path=path, env={})

    assert config.themes == ["Only Theme"]


@pytest.mark.unit
def test_missing_and_invalid_files(tmp_path):
    with pytest.raises(ConfigurationError):
        ConfigLoader.load_pipeline_config(config_path=tmp_path / "nope.json", env={})

    broken = tmp_path / "broken.json"
    broken.write_text("{not json")
    with pytest.raises(ConfigurationError):
        ConfigLoader.load_pipeline_config(config_path=broken, env={})


@pytest.mark.unit
def test_default_load_is_cached(monkeypatch):
    for key in list(os.environ):
        if key.startswith("THRESHOLD_"):
            monkeypatch.delenv(key)

    assert load_pipeline_config() is load_pipeline_config()
    ConfigLoader.clear_cache()
    assert load_pipeline_config(use_cache=False) is not load_pipeline_config()


@pytest.mark.unit
def test_parse_bool():
    assert parse_bool("off") is False
    assert parse_bool(" YES ") is True
    assert parse_bool("json") is True
    assert parse_bool("maybe", default=True) is True
    assert parse_bool(None) is None
