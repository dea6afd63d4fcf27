"""Configuration: frozen dataclass loaded from a YAML file with env overrides."""

import logging
import os
from dataclasses import dataclass, field, replace

import yaml

from groktail.errors import ConfigError
from groktail.matcher import DEFAULT_MEASUREMENT

logger = logging.getLogger(__name__)


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes")


def _as_tuple(value, key: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, (list, tuple)):
        raise ConfigError(f"{key} must be a list, got {type(value).__name__}")
    return tuple(str(v) for v in value)


_KNOWN_KEYS = {
    "files", "from_beginning", "grok", "watch_method", "poll_interval",
    "rescan_interval", "read_retries", "stop_timeout",
}


@dataclass(frozen=True)
class ParserConfig:
    files: tuple[str, ...] = ()
    from_beginning: bool = False
    patterns: tuple[str, ...] = ()
    custom_pattern_files: tuple[str, ...] = ()
    custom_patterns: str = ""
    measurement_name: str = DEFAULT_MEASUREMENT
    timezone: str = ""
    full_line_match: bool = False
    watch_method: str = "inotify"
    poll_interval: float = 0.25
    rescan_interval: float = 10.0
    read_retries: int = 3
    stop_timeout: float = 5.0
    extra: dict = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_dict(cls, d: dict) -> "ParserConfig":
        """Build from the YAML layout: top-level file options plus a ``grok`` section."""
        if not isinstance(d, dict):
            raise ConfigError("configuration must be a mapping")
        grok = d.get("grok") or {}
        if not isinstance(grok, dict):
            raise ConfigError("grok section must be a mapping")

        try:
            return cls(
                files=_as_tuple(d.get("files"), "files"),
                from_beginning=bool(d.get("from_beginning", False)),
                patterns=_as_tuple(grok.get("patterns"), "grok.patterns"),
                custom_pattern_files=_as_tuple(grok.get("custom_pattern_files"),
                                               "grok.custom_pattern_files"),
                custom_patterns=grok.get("custom_patterns") or "",
                measurement_name=grok.get("measurement") or DEFAULT_MEASUREMENT,
                timezone=grok.get("timezone") or "",
                full_line_match=bool(grok.get("full_line_match", False)),
                watch_method=d.get("watch_method", "inotify"),
                poll_interval=float(d.get("poll_interval", 0.25)),
                rescan_interval=float(d.get("rescan_interval", 10.0)),
                read_retries=int(d.get("read_retries", 3)),
                stop_timeout=float(d.get("stop_timeout", 5.0)),
                extra={k: v for k, v in d.items() if k not in _KNOWN_KEYS},
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"invalid configuration value: {e}") from e


def load_yaml_config(path: str | None) -> dict:
    """Load a YAML config file. Returns an empty dict if no path is given."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError as e:
        raise ConfigError(f"config file {path} not found") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"config file {path} is not valid YAML: {e}") from e
    logger.info("Loaded YAML config from %s", path)
    return data


def load_config(path: str | None = None) -> ParserConfig:
    """Build ParserConfig from a YAML file, then apply environment overrides."""
    config = ParserConfig.from_dict(load_yaml_config(path))
    if config.extra:
        logger.warning("Ignoring unknown config keys: %s", ", ".join(sorted(config.extra)))

    overrides = {}
    if "LOGPARSER_FROM_BEGINNING" in os.environ:
        overrides["from_beginning"] = _parse_bool(os.environ["LOGPARSER_FROM_BEGINNING"])
    if "LOGPARSER_WATCH_METHOD" in os.environ:
        overrides["watch_method"] = os.environ["LOGPARSER_WATCH_METHOD"]
    if "LOGPARSER_MEASUREMENT" in os.environ:
        overrides["measurement_name"] = os.environ["LOGPARSER_MEASUREMENT"]
    if "LOGPARSER_TIMEZONE" in os.environ:
        overrides["timezone"] = os.environ["LOGPARSER_TIMEZONE"]
    return replace(config, **overrides) if overrides else config
