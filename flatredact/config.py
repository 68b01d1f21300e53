"""
Pipeline configuration
"""

import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from .exceptions import ConfigurationError


DEFAULT_PRODUCER = "flatredact"

# Names of the built-in pattern rules (see detect.DEFAULT_RULES)
BUILTIN_RULE_NAMES = ("ssn", "email", "phone", "credit_card")

FILL_COLORS = {
    "black": (0.0, 0.0, 0.0),
    "white": (1.0, 1.0, 1.0),
    "red": (1.0, 0.0, 0.0),
    "blue": (0.0, 0.0, 1.0),
    "green": (0.0, 1.0, 0.0),
    "gray": (0.5, 0.5, 0.5),
    "grey": (0.5, 0.5, 0.5),
}


def get_fill_color(fill: str) -> Tuple[float, float, float]:
    """
    Convert fill color name to RGB tuple
    """
    try:
        return FILL_COLORS[fill.lower()]
    except KeyError:
        raise ConfigurationError(
            f"Unknown fill color '{fill}' (choose from {', '.join(sorted(FILL_COLORS))})"
        ) from None


def get_fill_rgb(fill: str) -> Tuple[int, int, int]:
    """
    Fill color as 0-255 components for pixmap operations
    """
    return tuple(int(round(c * 255)) for c in get_fill_color(fill))


@dataclass
class RedactionConfig:
    """Configuration for a redaction pipeline run"""
    scale: float = 2.0  # Render scale relative to 72 DPI
    fill: str = "black"
    min_region_size: float = 1.0  # Points; regions this thin are dropped
    safety_margin: float = 2.0  # Points added on the corrective second pass
    max_workers: Optional[int] = None
    case_sensitive: bool = False
    producer: str = DEFAULT_PRODUCER
    strip_active_content: bool = True
    enabled_rules: Tuple[str, ...] = field(default=BUILTIN_RULE_NAMES)

    def __post_init__(self):
        self.enabled_rules = tuple(self.enabled_rules)
        self.validate()

    def validate(self) -> None:
        if self.scale < 1:
            raise ConfigurationError(f"Render scale must be >= 1, got {self.scale}")
        if self.min_region_size < 0:
            raise ConfigurationError("min_region_size must not be negative")
        if self.safety_margin < 0:
            raise ConfigurationError("safety_margin must not be negative")
        if self.max_workers is not None and self.max_workers < 1:
            raise ConfigurationError("max_workers must be at least 1")
        get_fill_color(self.fill)
        unknown = set(self.enabled_rules) - set(BUILTIN_RULE_NAMES)
        if unknown:
            raise ConfigurationError(f"Unknown pattern rules: {', '.join(sorted(unknown))}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RedactionConfig":
        # Support nesting under a "flatredact" key
        if "flatredact" in data:
            data = data["flatredact"]

        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "RedactionConfig":
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read configuration from {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration in {path} must be a JSON object")

        return cls.from_dict(data)
