"""
Configuration loading and validation for graph-lifecycle.

Reads the store configuration file (YAML, or JSON which YAML also parses),
expands ${VAR} references from the environment, applies the NEO4J_*
environment overrides and validates the result before a session is opened.
"""

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from graph_lifecycle.common.errors import StoreConnectionError
from graph_lifecycle.common.logger import logger

VALID_BACKENDS = {"neo4j", "inmemory"}
VALID_SCHEMA_DEFAULTS = {"default", "none"}
VALID_URI_SCHEMES = (
    "bolt://",
    "bolt+s://",
    "bolt+ssc://",
    "neo4j://",
    "neo4j+s://",
    "neo4j+ssc://",
)

ENV_OVERRIDES = {
    "NEO4J_URI": "uri",
    "NEO4J_USERNAME": "username",
    "NEO4J_PASSWORD": "password",
    "NEO4J_DATABASE": "database",
}

_ENV_REF = re.compile(r"\$\{([^}]+)\}")


@dataclass
class StoreConfig:
    """Validated store configuration handed to the Store Session."""
    backend: str = "inmemory"
    uri: str = "bolt://localhost:7687"
    username: str = "neo4j"
    password: Optional[str] = None
    database: str = "neo4j"
    name: str = "graph"
    schema_default: str = "default"
    transactions: bool = True
    geoshape: bool = True
    cycles: int = 3
    pacing_min_ms: int = 500
    pacing_max_ms: int = 1000
    source_path: Optional[str] = None

    @property
    def auto_schema(self) -> bool:
        return self.schema_default == "default"

    def describe(self) -> str:
        """Human-readable target, never includes credentials."""
        if self.backend == "neo4j":
            return f"neo4j {self.uri} (database={self.database})"
        return f"inmemory store '{self.name}'"


def expand_env_vars(value: Any) -> Any:
    """
    Expand ${VAR} references in strings, recursively through lists and mappings.

    Unset variables expand to an empty string.
    """
    if isinstance(value, str):
        return _ENV_REF.sub(lambda match: os.environ.get(match.group(1), ""), value)
    if isinstance(value, list):
        return [expand_env_vars(item) for item in value]
    if isinstance(value, dict):
        return {key: expand_env_vars(item) for key, item in value.items()}
    return value


def _is_non_negative_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def validate_storage_config(storage: Any) -> List[str]:
    """
    Validate the `storage` section.

    Args:
        storage: Value of the `storage` key

    Returns:
        List of validation error messages (empty if valid)
    """
    if not isinstance(storage, dict):
        return [f"storage: Must be an object, got {type(storage).__name__}"]

    errors = []
    backend = storage.get("backend")
    if backend not in VALID_BACKENDS:
        errors.append(f"storage.backend: Invalid backend '{backend}'. Must be one of: {', '.join(sorted(VALID_BACKENDS))}")
        return errors

    if backend == "neo4j":
        uri = storage.get("uri")
        if not isinstance(uri, str) or not uri.strip():
            errors.append("storage.uri: Must be a non-empty string")
        elif not uri.startswith(VALID_URI_SCHEMES):
            errors.append(f"storage.uri: Unsupported scheme in '{uri}'. Supported schemes: {', '.join(VALID_URI_SCHEMES)}")

        for field_name in ("username", "password"):
            value = storage.get(field_name)
            if not isinstance(value, str) or not value:
                errors.append(f"storage.{field_name}: Must be a non-empty string")

        database = storage.get("database", "neo4j")
        if not isinstance(database, str) or not database:
            errors.append("storage.database: Must be a non-empty string")
    else:
        name = storage.get("name", "graph")
        if not isinstance(name, str) or not name.strip():
            errors.append("storage.name: Must be a non-empty string")

    return errors


def validate_schema_config(schema: Any) -> List[str]:
    if schema is None:
        return []
    if not isinstance(schema, dict):
        return [f"schema: Must be an object, got {type(schema).__name__}"]
    default = schema.get("default", "default")
    if default not in VALID_SCHEMA_DEFAULTS:
        return [f"schema.default: Invalid value '{default}'. Must be one of: {', '.join(sorted(VALID_SCHEMA_DEFAULTS))}"]
    return []


def validate_features_config(features: Any) -> List[str]:
    if features is None:
        return []
    if not isinstance(features, dict):
        return [f"features: Must be an object, got {type(features).__name__}"]
    errors = []
    for flag in ("transactions", "geoshape"):
        if flag in features and not isinstance(features[flag], bool):
            errors.append(f"features.{flag}: Must be a boolean, got {type(features[flag]).__name__}")
    return errors


def validate_lifecycle_config(lifecycle: Any) -> List[str]:
    if lifecycle is None:
        return []
    if not isinstance(lifecycle, dict):
        return [f"lifecycle: Must be an object, got {type(lifecycle).__name__}"]

    errors = []
    if "cycles" in lifecycle and not _is_non_negative_int(lifecycle["cycles"]):
        errors.append("lifecycle.cycles: Must be a non-negative integer")

    pacing = lifecycle.get("pacing")
    if pacing is None:
        return errors
    if not isinstance(pacing, dict):
        errors.append(f"lifecycle.pacing: Must be an object, got {type(pacing).__name__}")
        return errors

    for bound in ("min_ms", "max_ms"):
        if bound in pacing and not _is_non_negative_int(pacing[bound]):
            errors.append(f"lifecycle.pacing.{bound}: Must be a non-negative integer")
    if not errors and pacing.get("min_ms", 500) > pacing.get("max_ms", 1000):
        errors.append("lifecycle.pacing: min_ms must not exceed max_ms")
    return errors


def validate_config_mapping(config: Any) -> List[str]:
    """
    Validate a whole configuration mapping.

    Returns:
        List of validation error messages (empty if valid)
    """
    if not isinstance(config, dict):
        return [f"Configuration root must be an object, got {type(config).__name__}"]
    if "storage" not in config:
        return ["Configuration must have 'storage' field"]

    errors = []
    errors.extend(validate_storage_config(config["storage"]))
    errors.extend(validate_schema_config(config.get("schema")))
    errors.extend(validate_features_config(config.get("features")))
    errors.extend(validate_lifecycle_config(config.get("lifecycle")))
    return errors


def read_config_file(config_path: str) -> Dict[str, Any]:
    """
    Read a configuration file, expand environment references and apply overrides.

    Raises:
        StoreConnectionError: If the file is missing or cannot be parsed
    """
    path = Path(config_path)
    if not path.exists():
        raise StoreConnectionError(f"Configuration file not found: {config_path}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise StoreConnectionError(f"Invalid configuration in {config_path}: {e}") from e
    except OSError as e:
        raise StoreConnectionError(f"Error reading {config_path}: {e}") from e

    config = expand_env_vars(raw if raw is not None else {})
    return apply_env_overrides(config)


def apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """Let NEO4J_* environment variables override the neo4j storage section."""
    storage = config.get("storage") if isinstance(config, dict) else None
    if not isinstance(storage, dict) or storage.get("backend") != "neo4j":
        return config
    for env_name, field_name in ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            storage[field_name] = value
    return config


def build_store_config(config: Mapping[str, Any], source_path: Optional[str] = None) -> StoreConfig:
    """
    Turn a configuration mapping into a StoreConfig.

    Raises:
        StoreConnectionError: If the mapping does not validate
    """
    errors = validate_config_mapping(config)
    if errors:
        for error in errors:
            logger.error(f"  ✗ {error}")
        raise StoreConnectionError(
            f"Configuration validation failed with {len(errors)} error(s): {'; '.join(errors)}"
        )

    storage = config["storage"]
    schema = config.get("schema") or {}
    features = config.get("features") or {}
    lifecycle = config.get("lifecycle") or {}
    pacing = lifecycle.get("pacing") or {}

    return StoreConfig(
        backend=storage["backend"],
        uri=storage.get("uri", StoreConfig.uri),
        username=storage.get("username", StoreConfig.username),
        password=storage.get("password"),
        database=storage.get("database", StoreConfig.database),
        name=storage.get("name", StoreConfig.name),
        schema_default=schema.get("default", StoreConfig.schema_default),
        transactions=features.get("transactions", True),
        geoshape=features.get("geoshape", True),
        cycles=lifecycle.get("cycles", StoreConfig.cycles),
        pacing_min_ms=pacing.get("min_ms", StoreConfig.pacing_min_ms),
        pacing_max_ms=pacing.get("max_ms", StoreConfig.pacing_max_ms),
        source_path=source_path,
    )


def load_store_config(config_path: str) -> StoreConfig:
    """
    Load, validate and build the store configuration from a file.

    Args:
        config_path: Path to the YAML/JSON configuration file

    Returns:
        StoreConfig ready to open a session with
    """
    logger.info(f"Loading store configuration: {config_path}")
    config = read_config_file(config_path)
    store_config = build_store_config(config, source_path=str(config_path))
    logger.info(f"✓ Configuration validated successfully ({store_config.describe()})")
    return store_config


def validate_config(config_path: str) -> bool:
    """
    Validate a configuration file and log results.

    Returns:
        True if valid, False if invalid
    """
    logger.info(f"Validating store configuration: {config_path}")
    try:
        config = read_config_file(config_path)
    except StoreConnectionError as e:
        logger.error(f"  ✗ {e}")
        return False

    errors = validate_config_mapping(config)
    if errors:
        logger.error(f"Configuration validation failed with {len(errors)} error(s):")
        for error in errors:
            logger.error(f"  ✗ {error}")
        return False

    logger.info("✓ Configuration validated successfully")
    return True
