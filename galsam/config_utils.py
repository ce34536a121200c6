"""Load run configurations from YAML and apply command-line style overrides."""
from __future__ import annotations

import logging
import warnings
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence

from pydantic import ValidationError

from .errors import ConfigurationError
from .schema import Config
from .warnings import GalSamWarning

logger = logging.getLogger(__name__)

_SPECIAL_VALUES: Dict[str, Any] = {
    "true": True,
    "false": False,
    "none": None,
    "null": None,
    "nan": float("nan"),
    "inf": float("inf"),
    "+inf": float("inf"),
    "-inf": float("-inf"),
}


def parse_override_value(raw: str) -> Any:
    """Turn the right-hand side of ``key=value`` into a bool, number, None or string."""

    text = raw.strip()
    if text.lower() in _SPECIAL_VALUES:
        return _SPECIAL_VALUES[text.lower()]
    for cast in (int, float):
        try:
            return cast(text)
        except ValueError:
            continue
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "'\"":
        return text[1:-1]
    return text


def apply_overrides_dict(payload: Dict[str, Any], overrides: Sequence[str]) -> Dict[str, Any]:
    """Set ``section.key=value`` entries in ``payload`` in place and return it.

    Missing intermediate sections are created as empty mappings.
    """

    for item in overrides or ():
        path, sep, value = item.partition("=")
        keys = [key for key in path.strip().split(".") if key]
        if not sep or not keys:
            raise ConfigurationError(f"Malformed override '{item}'; use section.key=value")
        node: Any = payload
        for key in keys[:-1]:
            if not isinstance(node, dict):
                raise ConfigurationError(f"Override '{item}': '{key}' lies below a non-mapping entry")
            if node.get(key) is None:
                node[key] = {}
            node = node[key]
        if not isinstance(node, dict):
            raise ConfigurationError(f"Override '{item}': parent of '{keys[-1]}' is not a mapping")
        node[keys[-1]] = parse_override_value(value)
    return payload


def parse_config(data: Mapping[str, Any]) -> Config:
    """Validate a configuration mapping, reporting problems as :class:`ConfigurationError`."""

    if not isinstance(data, Mapping):
        raise ConfigurationError("Configuration root must be a mapping")
    try:
        return Config(**data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration:\n{exc}") from exc


def load_config(path: Path, overrides: Optional[Sequence[str]] = None) -> Config:
    """Load a YAML configuration file into a :class:`Config` instance."""

    from ruamel.yaml import YAML

    yaml = YAML(typ="safe")
    source_path = Path(path).resolve()
    with source_path.open("r", encoding="utf-8") as fh:
        data = yaml.load(fh)
    if data is None:
        data = {}
    if overrides:
        if not isinstance(data, dict):
            raise ConfigurationError(
                "Configuration overrides require the YAML root to be a mapping"
            )
        data = apply_overrides_dict(data, overrides)
    cfg = parse_config(data)
    logger.debug("load_config: loaded %s", source_path)
    return cfg


def configure_logging(level: int, suppress_warnings: bool = False) -> None:
    """Set the root log level and route galsam warnings through :mod:`logging`.

    With ``suppress_warnings`` the :class:`~galsam.warnings.GalSamWarning`
    family is ignored entirely.
    """

    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger().setLevel(level)
    if suppress_warnings:
        warnings.simplefilter("ignore", GalSamWarning)
    logging.captureWarnings(True)


__all__ = [
    "parse_override_value",
    "apply_overrides_dict",
    "parse_config",
    "load_config",
    "configure_logging",
]
