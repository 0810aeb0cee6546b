"""Configuration loading and management."""

import logging
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Dict, Any, List, Optional

import yaml
from dotenv import load_dotenv

from linguacache.core.exceptions import ConfigurationError
from linguacache.core.models import TRANSLATION_MAX_AGE_MS, LOCALE_MAX_AGE_MS
from linguacache.utils.security import validate_locale, validate_api_key

logger = logging.getLogger(__name__)


@dataclass
class EngineConfig:
    """Complete configuration for the translation engine."""

    # Languages
    source_language: str = "en"
    target_languages: List[str] = field(default_factory=lambda: ["es", "fr", "de"])
    current_locale: Optional[str] = None  # defaults to source_language

    # Remote API
    api_key: Optional[str] = None
    api_url: Optional[str] = None  # falls back to LINGUACACHE_API_URL, then the public endpoint
    model: Optional[str] = None
    timeout: float = 30.0  # seconds

    # Behaviour
    debug: bool = False
    fallback: bool = True  # return original text when everything else fails
    deactivate: bool = False  # pass every string through untouched
    batching: bool = True
    batch_window_ms: int = 100
    max_retries: int = 3  # total attempts, not extra ones

    # Caching
    cache_ttls: Dict[str, int] = field(default_factory=lambda: {
        "translation": TRANSLATION_MAX_AGE_MS,
        "locale": LOCALE_MAX_AGE_MS,
    })
    use_disk_cache: bool = False
    cache_dir: str = ".cache/linguacache"
    locale_dir: Optional[str] = None  # directory of {locale}.json bundles

    rate_limit: Dict[str, int] = field(default_factory=lambda: {"max_requests": 100, "window_ms": 60_000})

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @property
    def locale(self) -> str:
        return self.current_locale or self.source_language

    def validate(self) -> List[str]:
        """Validate configuration and return any issues."""
        issues = []

        for label, locale in [("source_language", self.source_language)] + [
            (f"target_languages[{i}]", loc) for i, loc in enumerate(self.target_languages)
        ]:
            valid, error = validate_locale(locale)
            if not valid:
                issues.append(f"{label}: {error}")

        if self.current_locale:
            valid, error = validate_locale(self.current_locale)
            if not valid:
                issues.append(f"current_locale: {error}")

        if self.api_key:
            valid, error = validate_api_key(self.api_key)
            if not valid:
                issues.append(f"api_key: {error}")

        if self.max_retries < 1:
            issues.append("max_retries must be at least 1")

        if self.batch_window_ms < 0:
            issues.append("batch_window_ms must be non-negative")

        if self.timeout <= 0:
            issues.append("timeout must be positive")

        if self.rate_limit.get("max_requests", 1) < 1 or self.rate_limit.get("window_ms", 1) < 1:
            issues.append("rate_limit values must be positive")

        return issues

    def raise_if_invalid(self) -> None:
        issues = self.validate()
        if issues:
            raise ConfigurationError("Invalid configuration: " + "; ".join(issues))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        """Build a config from a dict, ignoring unknown keys."""
        known = set(cls.__dataclass_fields__)
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(sorted(unknown))}")

        config = cls(**{k: v for k, v in data.items() if k in known})
        # nested dicts may be partial
        config.cache_ttls = {**cls().cache_ttls, **(data.get("cache_ttls") or {})}
        config.rate_limit = {**cls().rate_limit, **(data.get("rate_limit") or {})}
        return config


def _find_default_config() -> Optional[Path]:
    possible_paths = [
        Path("configs/default.yaml"),
        Path(__file__).parent.parent.parent / "configs" / "default.yaml"
    ]
    for path in possible_paths:
        if path.exists():
            return path
    return None


def load_config(config_path: Optional[str] = None, use_dotenv: bool = True) -> EngineConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to config file (defaults to configs/default.yaml)
        use_dotenv: Read a .env file into the environment first

    Returns:
        EngineConfig with environment overrides applied
    """
    if use_dotenv:
        load_dotenv()

    if config_path is None:
        path = _find_default_config()
        data = {} if path is None else _read_yaml(path)
    else:
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        data = _read_yaml(path)

    data = override_with_env(data)
    return EngineConfig.from_dict(data)


def _read_yaml(path: Path) -> Dict[str, Any]:
    with open(path, 'r', encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return data


def save_config(config: EngineConfig, config_path: str) -> None:
    """
    Save configuration to YAML file.

    The API key is never written out.
    """
    config_path = Path(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    data = config.to_dict()
    data.pop("api_key", None)
    with open(config_path, 'w', encoding="utf-8") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)


def _to_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def override_with_env(config: Dict[str, Any]) -> Dict[str, Any]:
    """Override config with environment variables."""
    env_mappings = {
        "LINGUACACHE_API_KEY": ("api_key", str),
        "LINGUACACHE_API_URL": ("api_url", str),
        "LINGUACACHE_MODEL": ("model", str),
        "LINGUACACHE_SOURCE_LANGUAGE": ("source_language", str),
        "LINGUACACHE_DEBUG": ("debug", _to_bool),
        "LINGUACACHE_MAX_RETRIES": ("max_retries", int),
        "LINGUACACHE_BATCH_WINDOW_MS": ("batch_window_ms", int),
        "LINGUACACHE_LOG_LEVEL": ("log_level", str),
    }

    config = dict(config)
    for env_var, (key, convert) in env_mappings.items():
        value = os.getenv(env_var)
        if value:
            try:
                config[key] = convert(value)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {env_var}: {value!r}", config_key=key) from e

    return config


def get_default_config() -> EngineConfig:
    """Get default configuration."""
    return EngineConfig()
