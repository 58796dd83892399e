import logging

import pytest

from quill.quill_config import (
    CONFIG_ENV, MacroSpec, QuillConfig, config_from_dict, configure_logging, load_config,
)


def test_defaults():
    config = config_from_dict(None)
    assert config == QuillConfig()
    assert config.prompt == "quill> "
    assert config.inspector == "dump"
    assert config.log_level == "WARNING"


def test_full_config():
    config = config_from_dict({
        "prompt": "py> ",
        "history_file": "/tmp/h",
        "inspector": "export",
        "locals": {"answer": 42},
        "start_hooks": ["import os"],
        "failure_hooks": ["print('oops')"],
        "macros": [{"pattern": "^dbg (.*)$", "template": "print({{1}})"}],
        "log_level": "debug",
        "log_file": "/tmp/quill.log",
    })
    assert config.prompt == "py> "
    assert config.inspector == "export"
    assert config.locals == {"answer": 42}
    assert config.start_hooks == ["import os"]
    assert config.failure_hooks == ["print('oops')"]
    assert config.macros == [MacroSpec("^dbg (.*)$", "print({{1}})")]
    assert config.log_level == "DEBUG"
    assert config.log_file == "/tmp/quill.log"


@pytest.mark.parametrize("data", [
    ["not", "a", "mapping"],
    {"prompt": 3},
    {"inspector": "fancy"},
    {"locals": ["x"]},
    {"start_hooks": "import os"},
    {"failure_hooks": [1]},
    {"macros": [{"pattern": "x"}]},
    {"log_level": "LOUD"},
])
def test_invalid_values(data):
    with pytest.raises(ValueError):
        config_from_dict(data)


def test_unknown_keys_are_ignored_with_a_warning(caplog):
    with caplog.at_level(logging.WARNING, logger="quill.quill_config"):
        config = config_from_dict({"colour": "blue"}, "test.yaml")
    assert config == QuillConfig()
    assert "colour" in caplog.text


def test_load_config_from_file(tmp_path):
    path = tmp_path / "quill.yaml"
    path.write_text("prompt: 'py> '\nlocals:\n  answer: 42\n", encoding="utf-8")
    config = load_config(str(path))
    assert config.prompt == "py> "
    assert config.locals == {"answer": 42}


def test_load_config_from_environment(tmp_path, monkeypatch):
    path = tmp_path / "env.yaml"
    path.write_text("inspector: export\n", encoding="utf-8")
    monkeypatch.setenv(CONFIG_ENV, str(path))
    assert load_config().inspector == "export"


def test_missing_default_config_means_defaults(tmp_path, monkeypatch):
    monkeypatch.setenv(CONFIG_ENV, str(tmp_path / "absent.yaml"))
    assert load_config() == QuillConfig()


def test_missing_explicit_config_is_an_error(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "absent.yaml"))


def test_malformed_yaml(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("prompt: [unclosed\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(str(path))


def test_configure_logging_to_file(tmp_path):
    log_file = tmp_path / "quill.log"
    logger = configure_logging(QuillConfig(log_level="INFO", log_file=str(log_file)))
    try:
        logging.getLogger("quill.quill_worker").info("hello from the worker")
        for handler in logger.handlers:
            handler.flush()
        text = log_file.read_text(encoding="utf-8")
        assert "quill.quill_worker - INFO - hello from the worker" in text
        assert logger.level == logging.INFO
    finally:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.setLevel(logging.NOTSET)
