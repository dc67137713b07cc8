"""
Configuration management for dep-bumper.

Provides configurable settings for registry lookups, network timeouts,
logging and the latest-version cache. Values come from a config file, then
environment variables, then validation.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from rich.console import Console

console = Console(stderr=True)


@dataclass
class UpdateConfig:
    """Update collection configuration."""

    rate_limit: float = 10.0
    max_concurrent: int = 20
    timeout_seconds: int = 30
    load_remote: bool = False
    include_prereleases: bool = False


@dataclass
class NetworkConfig:
    """Network and registry configuration."""

    user_agent: str = "dep-bumper/1.0.0"
    registry_urls: Dict[str, str] = field(
        default_factory=lambda: {
            "deno": "https://cdn.deno.land",
            "npm": "https://registry.npmjs.org",
        }
    )
    connect_timeout: float = 10.0
    read_timeout: float = 30.0


@dataclass
class LoggingConfig:
    """Logging and error handling configuration."""

    log_level: str = "WARNING"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class PerformanceConfig:
    """Latest-version cache configuration."""

    enable_caching: bool = True
    cache_ttl_seconds: int = 3600
    max_cache_size: int = 1000


@dataclass
class ComprehensiveConfig:
    """Main configuration containing all subsections."""

    update: UpdateConfig = field(default_factory=UpdateConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    performance: PerformanceConfig = field(default_factory=PerformanceConfig)

    @property
    def registry_urls(self) -> Dict[str, str]:
        return self.network.registry_urls


# Global configuration instance
_global_config: Optional[ComprehensiveConfig] = None


def validate_config_values(config: ComprehensiveConfig) -> List[str]:
    """
    Validate configuration values and return any errors.

    Args:
        config: Configuration to validate

    Returns:
        List[str]: List of validation errors (empty if valid)
    """
    errors = []

    if config.update.rate_limit <= 0:
        errors.append("update.rate_limit must be positive")
    if config.update.max_concurrent <= 0:
        errors.append("update.max_concurrent must be positive")
    if config.update.timeout_seconds <= 0:
        errors.append("update.timeout_seconds must be positive")

    if config.network.connect_timeout <= 0:
        errors.append("network.connect_timeout must be positive")
    if config.network.read_timeout <= 0:
        errors.append("network.read_timeout must be positive")
    for registry in ("deno", "npm"):
        url = config.network.registry_urls.get(registry, "")
        if not url.startswith(("http://", "https://")):
            errors.append(f"network.registry_urls.{registry} must be an http(s) URL")

    if config.logging.log_level.upper() not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        errors.append("logging.log_level must be a standard logging level name")

    if config.performance.cache_ttl_seconds < 0:
        errors.append("performance.cache_ttl_seconds must be non-negative")
    if config.performance.max_cache_size <= 0:
        errors.append("performance.max_cache_size must be positive")

    return errors


def load_config_file(config_path: Path) -> Optional[Dict[str, Any]]:
    """Load config from a JSON or YAML file."""
    if not config_path.exists():
        return None

    try:
        with open(config_path, encoding="utf-8") as f:
            if config_path.suffix.lower() in [".yaml", ".yml"]:
                return yaml.safe_load(f)
            elif config_path.suffix.lower() == ".json":
                return json.load(f)
    except (OSError, ValueError, yaml.YAMLError) as e:
        console.print(
            f"⚠️  Error loading config from {config_path}: {e}", style="yellow"
        )

    return None


def find_config_file() -> Optional[Path]:
    """Find config file in standard locations."""
    locations = [
        Path.cwd() / ".dep-bumper.json",
        Path.cwd() / ".dep-bumper.yaml",
        Path.cwd() / ".dep-bumper.yml",
        Path.home() / ".config" / "dep-bumper" / "config.json",
        Path.home() / ".config" / "dep-bumper" / "config.yaml",
        Path.home() / ".dep-bumper.json",
    ]

    for location in locations:
        if location.exists():
            return location

    return None


def load_environment_overrides(config: ComprehensiveConfig) -> None:
    """Load environment variable overrides."""

    def get_env_bool(key: str, default: bool = False) -> bool:
        value = os.environ.get(key, "").lower()
        return value in ["true", "1", "yes", "on"] if value else default

    def get_env_int(key: str, default: Optional[int] = None) -> Optional[int]:
        try:
            return int(os.environ[key]) if key in os.environ else default
        except ValueError:
            console.print(f"⚠️  Invalid integer value for {key}, using default", style="yellow")
            return default

    def get_env_float(key: str, default: Optional[float] = None) -> Optional[float]:
        try:
            return float(os.environ[key]) if key in os.environ else default
        except ValueError:
            console.print(f"⚠️  Invalid float value for {key}, using default", style="yellow")
            return default

    if rate_limit := get_env_float("DEP_BUMPER_RATE_LIMIT"):
        config.update.rate_limit = rate_limit
    if max_concurrent := get_env_int("DEP_BUMPER_MAX_CONCURRENT"):
        config.update.max_concurrent = max_concurrent
    if timeout := get_env_int("DEP_BUMPER_TIMEOUT"):
        config.update.timeout_seconds = timeout

    config.update.load_remote = get_env_bool(
        "DEP_BUMPER_LOAD_REMOTE", config.update.load_remote
    )
    config.update.include_prereleases = get_env_bool(
        "DEP_BUMPER_INCLUDE_PRERELEASES", config.update.include_prereleases
    )

    if user_agent := os.environ.get("DEP_BUMPER_USER_AGENT"):
        config.network.user_agent = user_agent
    if deno_url := os.environ.get("DEP_BUMPER_DENO_REGISTRY_URL"):
        config.network.registry_urls["deno"] = deno_url.rstrip("/")
    if npm_url := os.environ.get("DEP_BUMPER_NPM_REGISTRY_URL"):
        config.network.registry_urls["npm"] = npm_url.rstrip("/")
    if connect_timeout := get_env_float("DEP_BUMPER_CONNECT_TIMEOUT"):
        config.network.connect_timeout = connect_timeout
    if read_timeout := get_env_float("DEP_BUMPER_READ_TIMEOUT"):
        config.network.read_timeout = read_timeout

    if log_level := os.environ.get("DEP_BUMPER_LOG_LEVEL"):
        config.logging.log_level = log_level.upper()

    config.performance.enable_caching = get_env_bool(
        "DEP_BUMPER_ENABLE_CACHING", config.performance.enable_caching
    )
    cache_ttl = get_env_int("DEP_BUMPER_CACHE_TTL_SECONDS")
    if cache_ttl is not None:
        config.performance.cache_ttl_seconds = cache_ttl


def apply_config_section(
    config: Any, section_data: Dict[str, Any], section_name: str
) -> None:
    """Apply configuration from dictionary to config section."""
    for key, value in section_data.items():
        if hasattr(config, key):
            if isinstance(getattr(config, key), dict) and isinstance(value, dict):
                getattr(config, key).update(value)
            else:
                setattr(config, key, value)
        else:
            console.print(
                f"⚠️  Unknown config key in {section_name}: {key}", style="yellow"
            )


def build_config(file_config: Optional[Dict[str, Any]] = None) -> ComprehensiveConfig:
    """Build a configuration from parsed file data, without env overrides."""
    config = ComprehensiveConfig()
    if not file_config:
        return config

    for section_name in ("update", "network", "logging", "performance"):
        section_data = file_config.get(section_name)
        if isinstance(section_data, dict):
            apply_config_section(getattr(config, section_name), section_data, section_name)

    return config


def load_config() -> ComprehensiveConfig:
    """Load configuration from file and environment."""
    global _global_config

    if _global_config is not None:
        return _global_config

    file_config = None
    config_file = find_config_file()
    if config_file:
        file_config = load_config_file(config_file)

    config = build_config(file_config)
    load_environment_overrides(config)

    validation_errors = validate_config_values(config)
    if validation_errors:
        console.print("⚠️  Configuration validation errors:", style="red")
        for error in validation_errors:
            console.print(f"  • {error}", style="red")
        console.print("Using default values for invalid settings.", style="yellow")
        config = ComprehensiveConfig()

    _global_config = config
    return config


def get_config() -> ComprehensiveConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def reset_config() -> None:
    """Reset the global configuration (useful for testing)."""
    global _global_config
    _global_config = None


def create_sample_config() -> str:
    """Generate a sample configuration."""
    sample_config = {
        "update": {
            "rate_limit": 10.0,
            "max_concurrent": 20,
            "timeout_seconds": 30,
            "load_remote": False,
            "include_prereleases": False,
        },
        "network": {
            "user_agent": "dep-bumper/1.0.0",
            "registry_urls": {
                "deno": "https://cdn.deno.land",
                "npm": "https://registry.npmjs.org",
            },
            "connect_timeout": 10.0,
            "read_timeout": 30.0,
        },
        "logging": {
            "log_level": "WARNING",
            "log_format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        },
        "performance": {
            "enable_caching": True,
            "cache_ttl_seconds": 3600,
            "max_cache_size": 1000,
        },
    }

    return json.dumps(sample_config, indent=2)
