"""Detection configuration — defaults, validation and (de)serialization.

Keys are accepted in snake_case or in the camelCase form used by host
bindings (minAreaPercentage, ...). Validation follows the error-list
convention: an empty list means valid.
"""

import dataclasses
import json
import math
from dataclasses import dataclass


@dataclass(frozen=True)
class DetectionConfig:
    min_area_percentage: float = 0.25
    # Reserved: not consulted by the detection pipeline
    min_saturation: float = 0.6
    edge_sample_percentage: float = 0.15
    confidence_threshold: float = 0.7


# field name -> (camelCase alias, min, max)
FIELDS = {
    "min_area_percentage": ("minAreaPercentage", 0.0, 1.0),
    "min_saturation": ("minSaturation", 0.0, 1.0),
    "edge_sample_percentage": ("edgeSamplePercentage", 0.0, 0.5),
    "confidence_threshold": ("confidenceThreshold", 0.0, 1.0),
}

_ALIASES = {alias: name for name, (alias, _, _) in FIELDS.items()}


def _normalize_keys(data: dict) -> tuple[dict, list[str]]:
    normalized: dict = {}
    errors: list[str] = []
    for key, value in data.items():
        name = _ALIASES.get(key, key)
        if name not in FIELDS:
            errors.append(f"Unknown config key: {key!r}")
            continue
        if name in normalized:
            errors.append(f"Duplicate config key: {key!r}")
            continue
        normalized[name] = value
    return normalized, errors


def validate_config(data) -> list[str]:
    """Validate a (partial) config mapping. Returns list of errors (empty = valid)."""
    if not isinstance(data, dict):
        return ["Config must be a dict"]

    normalized, errors = _normalize_keys(data)
    for name, value in normalized.items():
        _, lo, hi = FIELDS[name]
        # bool is an int subclass; reject it explicitly
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append(f"'{name}' must be a number")
            continue
        try:
            # ints beyond float range overflow here
            finite = math.isfinite(float(value))
        except OverflowError:
            finite = False
        if not finite:
            errors.append(f"'{name}' must be finite")
            continue
        if value < lo or value > hi:
            errors.append(f"'{name}' must be in [{lo}, {hi}], got {value}")
    return errors


def config_from_dict(data, base: DetectionConfig | None = None) -> DetectionConfig:
    """Merge a partial mapping over base (defaults if None).

    Raises ValueError listing every validation error; base is never mutated.
    """
    errors = validate_config(data)
    if errors:
        raise ValueError(f"Invalid config: {'; '.join(errors)}")
    normalized, _ = _normalize_keys(data)
    changes = {name: float(value) for name, value in normalized.items()}
    return dataclasses.replace(base or DetectionConfig(), **changes)


def config_to_dict(config: DetectionConfig, camel_case: bool = False) -> dict:
    out = dataclasses.asdict(config)
    if camel_case:
        return {FIELDS[name][0]: value for name, value in out.items()}
    return out


def serialize_config(config: DetectionConfig) -> str:
    """Serialize config to a JSON string (camelCase keys)."""
    return json.dumps(config_to_dict(config, camel_case=True), indent=2)


def deserialize_config(data: str) -> DetectionConfig:
    """Deserialize JSON to a config. Raises ValueError on invalid JSON or schema."""
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON: {e}") from e
    return config_from_dict(parsed)
