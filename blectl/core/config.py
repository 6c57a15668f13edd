"""Configuration loading and validation for blectl."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from blectl.core.errors import ConfigLoadError, ConfigValidationError

LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class Settings:
    connect_timeout_s: float = 10.0
    settle_s: float = 1.0
    read_timeout_s: float = 5.0
    write_timeout_s: float = 2.0
    rssi_wait_s: float = 0.2
    scan_duration_s: float = 5.0
    buffer_capacity: int = 1000
    buffer_evict: int = 500
    log_dir: Path = field(default_factory=Path.home)


def _load_schema_validator() -> Any:
    schema_text = resources.files("blectl.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def default_config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "blectl/config.yaml"


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"Could not read config file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigValidationError(f"Config file {path} must contain a mapping at root")
    return loaded


def build_settings(doc: dict[str, Any], source: Path | str = "<config>") -> Settings:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    known = {f.name for f in fields(Settings)}
    values = {key: value for key, value in doc.items() if key in known}
    if "log_dir" in values:
        values["log_dir"] = Path(values["log_dir"]).expanduser()

    settings = Settings(**values)
    if settings.buffer_evict > settings.buffer_capacity:
        raise ConfigValidationError(
            f"buffer_evict ({settings.buffer_evict}) must not exceed buffer_capacity ({settings.buffer_capacity})"
        )
    return settings


def load_settings(path: Path | None = None) -> Settings:
    config_path = path or default_config_path()
    if not config_path.exists():
        if path is not None:
            raise ConfigLoadError(f"Config file {config_path} does not exist")
        LOGGER.debug("No config file at %s, using defaults", config_path)
        return Settings()
    LOGGER.debug("Loading config from %s", config_path)
    return build_settings(_read_yaml(config_path), config_path)
