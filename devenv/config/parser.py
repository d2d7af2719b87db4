"""Configuration file parsing utilities."""

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ValidationError

from devenv.config.schemas import EnvironmentDescriptor

DESCRIPTOR_FILE = "environment.json"


class ConfigError(Exception):
    """Error loading or parsing configuration."""

    def __init__(self, message: str, path: Path | None = None):
        self.path = path
        super().__init__(message)


def load_json(path: Path) -> dict[str, Any]:
    """Load and parse a JSON file.

    Args:
        path: Path to the JSON file

    Returns:
        Parsed JSON as a dictionary

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    if not path.exists():
        raise ConfigError(f"File not found: {path}", path)

    try:
        with open(path, encoding="utf-8-sig") as f:
            result = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}", path) from e
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}", path) from e

    if not isinstance(result, dict):
        raise ConfigError(f"JSON file must contain an object: {path}", path)
    return result


def dump_json(data: dict[str, Any], indent: int = 2) -> str:
    """Serialize data the way devenv writes its JSON files."""
    return json.dumps(data, indent=indent) + "\n"


def save_json(path: Path, data: dict[str, Any], indent: int = 2) -> None:
    """Save data to a JSON file.

    Args:
        path: Path to write to
        data: Data to serialize
        indent: JSON indentation level
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(dump_json(data, indent))


def load_descriptor(environment_root: Path) -> EnvironmentDescriptor:
    """Load the environment descriptor from environment.json.

    Any structural defect rejects the whole file; a plugin without a path
    is never silently dropped.

    Args:
        environment_root: Path to the environment directory

    Returns:
        Parsed EnvironmentDescriptor

    Raises:
        ConfigError: If the file is missing or invalid
    """
    descriptor_path = environment_root / DESCRIPTOR_FILE
    if not descriptor_path.exists():
        raise ConfigError(f"No environment file was found at {descriptor_path}.", descriptor_path)

    data = load_json(descriptor_path)

    try:
        return EnvironmentDescriptor.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid environment configuration: {e}", descriptor_path) from e


def _model_to_dict(model: BaseModel) -> dict[str, Any]:
    """Dump declared fields without None values, then unknown keys as loaded."""
    data: dict[str, Any] = {}
    for name in type(model).model_fields:
        value = getattr(model, name)
        if value is None:
            continue
        if isinstance(value, BaseModel):
            value = _model_to_dict(value)
        elif isinstance(value, list):
            value = [_model_to_dict(v) if isinstance(v, BaseModel) else v for v in value]
        data[name] = value
    data.update(model.model_extra or {})
    return data


def descriptor_to_dict(descriptor: EnvironmentDescriptor) -> dict[str, Any]:
    """Convert a descriptor to the dictionary written to disk.

    Declared fields left as None are omitted. Unknown keys are kept exactly
    as they were loaded, including null values.
    """
    return _model_to_dict(descriptor)


def save_descriptor(environment_root: Path, descriptor: EnvironmentDescriptor) -> None:
    """Save the environment descriptor to environment.json.

    Args:
        environment_root: Path to the environment directory
        descriptor: EnvironmentDescriptor to save
    """
    save_json(environment_root / DESCRIPTOR_FILE, descriptor_to_dict(descriptor))


def find_environment_root(start_path: Path | None = None) -> Path | None:
    """Find the environment root by looking for environment.json.

    Args:
        start_path: Directory to start searching from (defaults to cwd)

    Returns:
        Path to environment root, or None if not found
    """
    if start_path is None:
        start_path = Path.cwd()

    current = start_path.resolve()
    while current != current.parent:
        if (current / DESCRIPTOR_FILE).exists():
            return current
        current = current.parent

    if (current / DESCRIPTOR_FILE).exists():
        return current

    return None
