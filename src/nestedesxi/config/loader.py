# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/nestedesxi/config/loader.py

import logging
import os
from pathlib import Path

import pydantic
import yaml

from nestedesxi.errors import ConfigError
from .models import FleetConfig

log = logging.getLogger("nestedesxi")

SECRETS_ENV = "NESTEDESXI_SECRETS_FILE"


def _overlay_secrets(config: dict, secrets: dict) -> dict:
    """
    Fold secrets into the fleet config in place. Nested sections are
    merged key by key; empty secret values never blank out a config value.
    """
    for key, value in secrets.items():
        current = config.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            _overlay_secrets(current, value)
        elif value is not None and value != "":
            config[key] = value
    return config


def _secrets_path(config_path: Path) -> Path | None:
    explicit = os.environ.get(SECRETS_ENV)
    if explicit:
        if Path(explicit).is_file():
            return Path(explicit)
        log.warning("%s=%s does not exist, vCenter credentials come from the config only", SECRETS_ENV, explicit)
        return None

    beside = config_path.with_name("secrets.yaml")
    return beside if beside.is_file() else None


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    try:
        raw = path.read_text()
    except OSError as exc:
        raise ConfigError(f"cannot read {path}: {exc}") from exc

    expanded = os.path.expandvars(raw)
    try:
        data = yaml.safe_load(expanded) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"cannot parse {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return data


def load_config(path: str | Path) -> FleetConfig:
    """
    Load and validate a fleet YAML config.

    The vCenter password (or any other value) can be kept out of the main
    file: a ``secrets.yaml`` mirroring its structure is deep-merged before
    validation. Discovery order:
      1. ``NESTEDESXI_SECRETS_FILE`` env var
      2. ``secrets.yaml`` next to the config file

    ``${ENV_VAR}`` placeholders are expanded in both files.
    """
    path = Path(path)
    data = _load_yaml(path)

    secrets_path = _secrets_path(path)
    if secrets_path:
        log.debug("Merging secrets from %s", secrets_path)
        _overlay_secrets(data, _load_yaml(secrets_path))
    else:
        log.debug("No secrets.yaml found, proceeding without secrets merge")

    try:
        return FleetConfig.model_validate(data)
    except pydantic.ValidationError as exc:
        raise ConfigError(f"invalid config {path}:\n{exc}") from exc
