import pytest

from agent_studio.settings import DEFAULTS, ToolSettings, get_setting, load_settings


def test_defaults_without_file():
    settings = load_settings(environ={})
    assert settings == DEFAULTS
    assert settings is not DEFAULTS
    assert get_setting(settings, "agent.max_iterations") == 10


def test_yaml_deep_merge(tmp_path):
    cfg = tmp_path / "settings.yaml"
    cfg.write_text("agent:\n  max_iterations: 4\ntools:\n  shell_timeout_ms: 500\n")

    settings = load_settings(str(cfg), environ={})

    assert settings["agent"] == {"max_iterations": 4, "max_tokens": 4096, "temperature": 0.7}
    assert settings["tools"]["shell_timeout_ms"] == 500
    assert settings["tools"]["list_limit"] == 1000


def test_environment_overrides_win(tmp_path):
    cfg = tmp_path / "settings.yaml"
    cfg.write_text("agent:\n  max_iterations: 4\n")

    settings = load_settings(
        str(cfg),
        overrides={"agent": {"max_iterations": 6}},
        environ={"AGENT_STUDIO_MAX_ITERATIONS": "8", "AGENT_STUDIO_STORAGE_ROOT": "/srv/data"},
    )

    assert settings["agent"]["max_iterations"] == 8
    assert settings["storage"]["root"] == "/srv/data"


def test_invalid_environment_value():
    with pytest.raises(ValueError):
        load_settings(environ={"AGENT_STUDIO_MAX_ITERATIONS": "many"})


def test_non_mapping_file(tmp_path):
    cfg = tmp_path / "settings.yaml"
    cfg.write_text("- a\n- b\n")
    with pytest.raises(ValueError):
        load_settings(str(cfg), environ={})


def test_get_setting_missing_path():
    assert get_setting({"a": {"b": 1}}, "a.c", "fallback") == "fallback"
    assert get_setting({"a": 1}, "a.b") is None


def test_tool_settings_from_settings():
    tool_settings = ToolSettings.from_settings({"tools": {"shell_timeout_ms": 1234, "unknown": True}})
    assert tool_settings.shell_timeout_ms == 1234
    assert tool_settings.max_background_processes == 16
