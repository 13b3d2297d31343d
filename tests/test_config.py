import pytest

from ghostrun.ghostrun_config import WorkerConfig, load_config, env_overrides
from ghostrun.ghostrun_datatypes import ConfigError


def test_defaults():
    cfg = load_config(env={})
    assert cfg == WorkerConfig()
    assert cfg.ready_marker == "[WAITING]"
    assert cfg.sentinel == "END"
    assert cfg.tagged is True
    assert cfg.exactly_once is False


def test_yaml_file(tmp_path):
    p = tmp_path / "worker.yaml"
    p.write_text("tagged: false\nsentinel: STOP\npreload:\n  - a.py\n  - b.py\n", encoding="utf-8")
    cfg = load_config(p, env={})
    assert cfg.tagged is False
    assert cfg.sentinel == "STOP"
    assert cfg.preload == ["a.py", "b.py"]


def test_empty_yaml_file_uses_defaults(tmp_path):
    p = tmp_path / "empty.yaml"
    p.write_text("", encoding="utf-8")
    assert load_config(p, env={}) == WorkerConfig()


def test_precedence_file_env_overrides(tmp_path):
    p = tmp_path / "worker.yaml"
    p.write_text("log_level: info\nexactly_once: false\nnew_prefix: FILE\n", encoding="utf-8")
    env = {"GHOSTRUN_EXACTLY_ONCE": "yes", "GHOSTRUN_NEW_PREFIX": "ENV"}
    cfg = load_config(p, env=env, new_prefix="ARG", log_level=None)
    assert cfg.log_level == "INFO"
    assert cfg.exactly_once is True
    assert cfg.new_prefix == "ARG"


def test_env_overrides_only_known_names():
    env = {"GHOSTRUN_TAGGED": "0", "GHOSTRUN_BOGUS": "1", "OTHER": "x"}
    assert env_overrides(env) == {"tagged": "0"}


def test_env_preload_uses_path_separator():
    import os
    env = {"GHOSTRUN_PRELOAD": os.pathsep.join(["one.py", "two.py"])}
    assert load_config(env=env).preload == ["one.py", "two.py"]


@pytest.mark.parametrize(
    "overrides",
    [
        {"tagged": "maybe"},
        {"log_level": "LOUD"},
        {"sentinel": ""},
        {"preload": 3},
        {"nonsense": 1},
    ],
)
def test_invalid_values(overrides):
    with pytest.raises(ConfigError):
        load_config(env={}, **overrides)


def test_bad_files(tmp_path):
    with pytest.raises(ConfigError):
        load_config(tmp_path / "missing.yaml", env={})
    p = tmp_path / "list.yaml"
    p.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(p, env={})
    q = tmp_path / "broken.yaml"
    q.write_text("a: [1, 2\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(q, env={})
