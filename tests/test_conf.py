import threading
import time
from datetime import timedelta

import pytest

from tbcquery.conf import ConfigManager, expand_variables

SAMPLE = """\
App:
  Name: svc
  Port: 8080
  Debug: "true"
  Ratio: 0.25
  Tags: [alpha, beta]
  Words: "one two  three"
  Timeout: 1h30m
  Short: 300ms
log:
  path: /var/${app.name}/out.log
  level: Info
"""


@pytest.fixture
def manager(tmp_path):
    path = tmp_path / "conf.yaml"
    path.write_text(SAMPLE, encoding="utf-8")
    mgr = ConfigManager(str(path))
    mgr.load()
    return mgr


def test_typed_getters(manager):
    assert manager.get_str("app.name") == "svc"
    assert manager.get_int("app.port") == 8080
    assert manager.get_bool("app.debug") is True
    assert manager.get_float("app.ratio") == 0.25
    assert manager.get_list("app.tags") == ["alpha", "beta"]
    assert manager.get_list("app.words") == ["one", "two", "three"]


def test_keys_are_case_insensitive(manager):
    assert manager.get_str("APP.NAME") == manager.get_str("app.name")
    assert "app" in manager.all_settings()


def test_durations(manager):
    assert manager.get_duration("app.timeout") == timedelta(hours=1, minutes=30)
    assert manager.get_duration("app.short") == timedelta(milliseconds=300)
    assert manager.get_duration("app.name") == timedelta(0)


def test_unset_keys(manager):
    assert manager.is_set("app.port")
    assert not manager.is_set("app.missing")
    assert manager.get("app.missing", "fallback") == "fallback"
    assert manager.get_str("app.missing") == ""
    assert manager.get_int("app.name") == 0
    assert manager.get_mapping("app.name") == {}


def test_mapping_and_settings_copy(manager):
    mapping = manager.get_mapping("log")
    assert mapping["level"] == "Info"
    settings = manager.all_settings()
    settings["app"]["name"] = "changed"
    assert manager.get_str("app.name") == "svc"


def test_log_path_expands_variables(manager):
    assert manager.log_path() == "/var/svc/out.log"


def test_expand_variables_edge_cases(manager):
    assert expand_variables(manager, "") == ""
    assert expand_variables(manager, "x-${app.missing}-y") == "x--y"
    assert expand_variables(manager, "open ${app.name") == "open ${app.name"
    assert expand_variables(manager, "${app.name}/${log.level}") == "svc/Info"


def test_missing_file_gives_empty_settings(tmp_path):
    mgr = ConfigManager(str(tmp_path / "absent.yaml"))
    mgr.load()
    assert mgr.all_settings() == {}
    assert mgr.last_load_time is not None


def test_invalid_yaml_raises(tmp_path):
    path = tmp_path / "conf.yaml"
    path.write_text("a: [unclosed\n", encoding="utf-8")
    with pytest.raises(ValueError):
        ConfigManager(str(path)).load()


def test_non_mapping_top_level_raises(tmp_path):
    path = tmp_path / "conf.yaml"
    path.write_text("- one\n- two\n", encoding="utf-8")
    with pytest.raises(ValueError):
        ConfigManager(str(path)).load()


def test_path_can_be_changed(tmp_path, manager):
    other = tmp_path / "other.yaml"
    other.write_text("app:\n  name: other\n", encoding="utf-8")
    manager.path = str(other)
    assert manager.path == str(other)
    manager.load()
    assert manager.get_str("app.name") == "other"


def test_watch_reloads_on_change(tmp_path):
    path = tmp_path / "conf.yaml"
    path.write_text("app:\n  name: first\n", encoding="utf-8")
    mgr = ConfigManager(str(path))
    mgr.load()
    changed = threading.Event()
    mgr.enable_watch(changed.set)
    try:
        assert mgr.watch_enabled
        time.sleep(0.3)
        path.write_text("app:\n  name: second\n", encoding="utf-8")
        assert changed.wait(10)
        assert mgr.get_str("app.name") == "second"
    finally:
        mgr.disable_watch()
    assert not mgr.watch_enabled