"""
User configuration, read from a YAML file.

The file is the one named by $QUILL_CONFIG, else ~/.quill.yaml. A missing
file means defaults throughout. Example:

    prompt: "py> "
    history_file: ~/.quill_history
    inspector: export
    locals:
      answer: 42
    start_hooks:
      - "import os, sys"
    failure_hooks:
      - "print('statement failed')"
    macros:
      - pattern: "^dbg (.*)$"
        template: "print(repr({{1}}))"
    log_level: DEBUG
    log_file: /tmp/quill.log
"""

import logging
import os
import sys
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from quill.quill_inspector import INSPECTORS

logger = logging.getLogger(__name__)

CONFIG_ENV = "QUILL_CONFIG"
DEFAULT_CONFIG_PATH = "~/.quill.yaml"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class MacroSpec:
    pattern: str
    template: str


@dataclass
class QuillConfig:
    prompt: str = "quill> "
    history_file: str = "~/.quill_history"
    inspector: str = "dump"
    locals: Dict[str, Any] = field(default_factory=dict)
    start_hooks: List[str] = field(default_factory=list)
    failure_hooks: List[str] = field(default_factory=list)
    macros: List[MacroSpec] = field(default_factory=list)
    log_level: str = "WARNING"
    log_file: Optional[str] = None


def _string_list(value: Any, key: str, source: str) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"{source}: '{key}' must be a list of code strings")
    return list(value)


def config_from_dict(data: Any, source: str = "<config>") -> QuillConfig:
    """Validate a parsed YAML document and build a QuillConfig from it."""
    if data is None:
        return QuillConfig()
    if not isinstance(data, dict):
        raise ValueError(f"{source}: top level must be a mapping")

    known = {f.name for f in fields(QuillConfig)}
    for key in data:
        if key not in known:
            logger.warning("%s: ignoring unknown key %r", source, key)

    config = QuillConfig()
    for key in ("prompt", "history_file"):
        if key in data:
            if not isinstance(data[key], str):
                raise ValueError(f"{source}: '{key}' must be a string")
            setattr(config, key, data[key])

    if "inspector" in data:
        if data["inspector"] not in INSPECTORS:
            raise ValueError(f"{source}: 'inspector' must be one of {sorted(INSPECTORS)}")
        config.inspector = data["inspector"]

    if data.get("locals") is not None:
        if not isinstance(data["locals"], dict) or not all(isinstance(k, str) for k in data["locals"]):
            raise ValueError(f"{source}: 'locals' must map names to values")
        config.locals = dict(data["locals"])

    config.start_hooks = _string_list(data.get("start_hooks"), "start_hooks", source)
    config.failure_hooks = _string_list(data.get("failure_hooks"), "failure_hooks", source)

    for entry in data.get("macros") or []:
        if (not isinstance(entry, dict) or not isinstance(entry.get("pattern"), str)
                or not isinstance(entry.get("template"), str)):
            raise ValueError(f"{source}: each macro needs a 'pattern' and a 'template' string")
        config.macros.append(MacroSpec(entry["pattern"], entry["template"]))

    if "log_level" in data:
        level = str(data["log_level"]).upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"{source}: 'log_level' must be one of {', '.join(LOG_LEVELS)}")
        config.log_level = level
    if data.get("log_file") is not None:
        config.log_file = str(data["log_file"])
    return config


def config_path(path: Optional[str] = None) -> Path:
    return Path(os.path.expanduser(path or os.environ.get(CONFIG_ENV) or DEFAULT_CONFIG_PATH))


def load_config(path: Optional[str] = None) -> QuillConfig:
    target = config_path(path)
    if not target.exists():
        if path:
            raise FileNotFoundError(f"config file not found: {path}")
        logger.debug("no config at %s, using defaults", target)
        return QuillConfig()
    try:
        data = yaml.safe_load(target.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ValueError(f"{target}: {e}") from e
    return config_from_dict(data, str(target))


def configure_logging(config: QuillConfig) -> logging.Logger:
    """Send the package's log records to stderr or to config.log_file."""
    package_logger = logging.getLogger("quill")
    package_logger.setLevel(config.log_level)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    if config.log_file:
        handler = logging.FileHandler(os.path.expanduser(config.log_file))
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    package_logger.addHandler(handler)
    return package_logger
