import json

import pytest


@pytest.fixture
def write_config(tmp_path, monkeypatch):
    def _write(data, name="config.json"):
        p = tmp_path / name
        if name.endswith((".yml", ".yaml")):
            p.write_text(data, encoding="utf-8")
        else:
            p.write_text(json.dumps(data), encoding="utf-8")
        monkeypatch.setenv("CONFIG_PATH", str(p))
        return p

    return _write


def test_defaults_when_no_config_path():
    from service import config_schema

    cfg = config_schema.load_config()
    assert cfg["schedule"] == {"interval": {"minutes": 5}}
    assert cfg["first_run_delay_seconds"] == 5
    assert cfg["history_size"] == 20
    assert cfg["harvest"] == {}
    config_schema.validate(cfg)


def test_load_json_from_env(write_config):
    from service import config_schema

    write_config({"timezone": "Asia/Riyadh", "schedule": {"cron": "*/10 * * * *"}, "harvest": {"max_jobs": 25}})
    cfg = config_schema.load_config()
    assert cfg["timezone"] == "Asia/Riyadh"
    assert cfg["harvest"]["max_jobs"] == 25
    config_schema.validate(cfg)


def test_load_yaml(write_config):
    from service import config_schema

    path = write_config(
        "schedule:\n  interval:\n    minutes: 15\nharvest:\n  include_sponsored: true\n",
        name="config.yaml",
    )
    cfg = config_schema.load_config(str(path))
    assert cfg["schedule"]["interval"]["minutes"] == 15
    assert cfg["harvest"]["include_sponsored"] is True
    config_schema.validate(cfg)


def test_missing_file_is_a_config_error(tmp_path):
    from service import config_schema

    with pytest.raises(config_schema.ConfigError):
        config_schema.load_config(str(tmp_path / "nope.json"))


def test_top_level_must_be_object(write_config):
    from service import config_schema

    write_config(["not", "an", "object"])
    with pytest.raises(config_schema.ConfigError):
        config_schema.load_config()


@pytest.mark.parametrize(
    "patch",
    [
        {"schedule": {}},
        {"schedule": {"interval": {"minutes": 5}, "cron": "* * * * *"}},
        {"schedule": {"interval": {"minutes": 0}}},
        {"schedule": {"interval": {"months": 1}}},
        {"history_size": 0},
        {"first_run_delay_seconds": "soon"},
        {"harvest": {"unknown_policy": "maybe"}},
        {"harvest": {"max_jobs": 0}},
    ],
)
def test_validate_rejects(patch):
    from service import config_schema

    cfg = config_schema.load_config()
    cfg.update(patch)
    with pytest.raises(config_schema.ConfigError):
        config_schema.validate(cfg)
