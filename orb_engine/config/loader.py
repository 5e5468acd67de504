"""Layered configuration: packaged defaults, a user file, then CLI overrides.

Each layer is a plain mapping. Layers merge left to right; the result is
validated once by ``EngineConfig``. Holidays accumulate across layers so a
user file only needs to list additional closures.
"""

import hashlib
import json
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from loguru import logger
from pydantic import ValidationError
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from .schema import EngineConfig

DEFAULTS_PATH = Path(__file__).with_name("defaults.yaml")

# Keys whose list values are unioned instead of replaced.
_ACCUMULATING: Tuple[Tuple[str, ...], ...] = (("session", "holidays"),)


def read_layer(path: Path) -> Dict[str, Any]:
    """Read one YAML layer.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        ValueError: If the file is not a YAML mapping.
    """
    if not path.exists():
        raise FileNotFoundError(f"YAML file not found: {path}")

    with path.open("r") as f:
        data = YAML(typ="safe").load(f)

    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return dict(data)


def merge_layers(*layers: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge layers left to right without mutating any of them.

    Examples:
        >>> merge_layers({"risk": {"min_rrr": 1.5, "max_stop_distance": 2.0}},
        ...              {"risk": {"min_rrr": 1.6}})
        {'risk': {'min_rrr': 1.6, 'max_stop_distance': 2.0}}
    """
    merged: Dict[str, Any] = {}
    for layer in layers:
        _merge_into(merged, layer, ())
    return merged


def _merge_into(target: Dict[str, Any], layer: Mapping[str, Any], path: Tuple[str, ...]) -> None:
    for key, value in layer.items():
        if isinstance(key, date):
            key = key.isoformat()
        here = path + (key,)
        current = target.get(key)
        if isinstance(value, Mapping):
            if not isinstance(current, dict):
                current = target[key] = {}
            _merge_into(current, value, here)
        elif here in _ACCUMULATING and isinstance(current, list) and isinstance(value, list):
            seen = {str(v) for v in current}
            target[key] = current + [v for v in value if str(v) not in seen]
        else:
            target[key] = list(value) if isinstance(value, list) else value


def parse_overrides(assignments: Iterable[str]) -> Dict[str, Any]:
    """Turn ``section.field=value`` strings into a nested override layer.

    Values are parsed as YAML scalars or flow collections, so ``1.6`` is a
    float, ``[SPY, QQQ]`` a list and ``2025-07-03`` a date.

    Raises:
        ValueError: On a missing ``=`` or an empty key segment.

    Examples:
        >>> parse_overrides(["risk.min_rrr=1.6", "symbols=[SPY, QQQ]"])
        {'risk': {'min_rrr': 1.6}, 'symbols': ['SPY', 'QQQ']}
    """
    yaml = YAML(typ="safe")
    layer: Dict[str, Any] = {}
    for assignment in assignments:
        key, sep, raw = assignment.partition("=")
        parts: List[str] = [p.strip() for p in key.split(".")]
        if not sep or not all(parts):
            raise ValueError(f"Override must look like section.field=value, got {assignment!r}")
        try:
            value = yaml.load(raw) if raw.strip() else None
        except YAMLError as e:
            raise ValueError(f"Unparseable override value in {assignment!r}: {e}") from e

        node = layer
        for part in parts[:-1]:
            child = node.setdefault(part, {})
            if not isinstance(child, dict):
                raise ValueError(f"Override {assignment!r} conflicts with an earlier value")
            node = child
        node[parts[-1]] = value
    return layer


def load_config(
    path: Optional[Path | str] = None,
    use_defaults: bool = True,
    overrides: Optional[Mapping[str, Any]] = None,
) -> EngineConfig:
    """Load and validate the engine configuration.

    Args:
        path: User YAML merged over the defaults. None loads defaults only.
        use_defaults: Start from the packaged defaults.yaml.
        overrides: Final layer, typically from ``parse_overrides``.

    Returns:
        Validated EngineConfig instance.

    Raises:
        FileNotFoundError: If a config file doesn't exist.
        ValueError: If validation fails.
    """
    layers: List[Mapping[str, Any]] = []
    if use_defaults:
        layers.append(read_layer(DEFAULTS_PATH))
    if path is not None:
        layers.append(read_layer(Path(path)))
        logger.debug(f"Merging user configuration from {path}")
    if overrides:
        layers.append(overrides)
        logger.debug(f"Applying overrides: {dict(overrides)}")

    try:
        config = EngineConfig(**merge_layers(*layers))
    except ValidationError as e:
        raise ValueError(f"Config validation failed: {e}") from e

    logger.info(
        f"Loaded configuration: {config.name} v{config.version} "
        f"({len(config.symbols)} symbols, {len(config.session.holidays)} holidays)"
    )
    return config


def resolved_config_hash(config: EngineConfig) -> str:
    """First 16 hex chars of the SHA-256 of the canonical JSON config."""
    canonical = json.dumps(config.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]
