"""
Configuration Management for TopFrag

Provides configuration loading from multiple sources:
- Default values
- Configuration files (TOML, JSON)
- Environment variables

Configuration precedence (highest to lowest):
1. Environment variables (TOPFRAG_* plus the conventional service keys)
2. Configuration file
3. Default values
"""

import json
import logging
import logging.handlers
import os
import tomllib
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


# ============================================================================
# Configuration Dataclasses
# ============================================================================


@dataclass
class DatabaseConfig:
    """Configuration for the SQL database."""

    # Full SQLAlchemy URL; takes precedence over path
    url: str | None = None
    # SQLite file path, defaults to ~/.topfrag/topfrag.db
    path: str | None = None


@dataclass
class CacheConfig:
    """Configuration for the derived-stat cache."""

    enabled: bool = True
    ttl_seconds: int = 1800


@dataclass
class AuthConfig:
    """Configuration for user tokens and the parser API key."""

    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    jwt_expiry_hours: int = 24
    # Shared key the parser service sends on ingestion and callbacks
    api_key: str = ""


@dataclass
class ParserServiceConfig:
    """Configuration for the external demo parser service."""

    base_url: str = "http://localhost:8080"
    api_key: str = ""
    # Public URL of this API, used to build the parser's callback URLs
    app_url: str = "http://localhost:8000"
    timeout: float = 30.0


@dataclass
class SteamConfig:
    """Configuration for Steam OpenID login and the Steam Web API."""

    api_key: str = ""
    # OpenID realm; derived from the callback URL when unset
    realm: str | None = None
    frontend_url: str = "http://localhost:3000"


@dataclass
class FaceITConfig:
    """Configuration for the FACEIT data API."""

    api_key: str = ""
    base_url: str = "https://open.faceit.com/data/v4"
    timeout: float = 10.0


@dataclass
class DiscordConfig:
    """Configuration for the Discord application and bot."""

    application_id: str = ""
    bot_token: str = ""
    # Hex-encoded ed25519 key used to verify interaction webhooks
    public_key: str = ""
    api_base: str = "https://discord.com/api/v10"
    # OAuth2 application credentials for "Login with Discord"
    client_id: str = ""
    client_secret: str = ""
    # Defaults to /api/auth/discord/callback on the requesting host
    redirect_uri: str | None = None
    authorize_url: str = "https://discord.com/oauth2/authorize"


@dataclass
class UploadConfig:
    """Configuration for user demo uploads."""

    max_file_size: int = 1024 * 1024 * 1024  # 1 GiB
    allowed_extensions: list[str] = field(default_factory=lambda: [".dem"])
    storage_dir: str | None = None


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: str | None = None
    file_max_bytes: int = 10 * 1024 * 1024  # 10MB
    file_backup_count: int = 5


@dataclass
class TopFragConfig:
    """Main configuration container."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    parser_service: ParserServiceConfig = field(default_factory=ParserServiceConfig)
    steam: SteamConfig = field(default_factory=SteamConfig)
    faceit: FaceITConfig = field(default_factory=FaceITConfig)
    discord: DiscordConfig = field(default_factory=DiscordConfig)
    upload: UploadConfig = field(default_factory=UploadConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Version of the config format
    config_version: str = "1.0"


# ============================================================================
# Configuration Loading
# ============================================================================


def get_default_config_paths() -> list[Path]:
    """Get the default paths to search for configuration files."""
    home = Path.home()
    return [
        Path.cwd() / "topfrag.toml",
        Path.cwd() / "topfrag.json",
        home / ".config" / "topfrag" / "config.toml",
        home / ".config" / "topfrag" / "config.json",
    ]


def load_toml_config(path: Path) -> dict[str, Any]:
    """Load configuration from a TOML file."""
    with open(path, "rb") as f:
        return tomllib.load(f)


def load_json_config(path: Path) -> dict[str, Any]:
    """Load configuration from a JSON file."""
    with open(path) as f:
        return json.load(f)


def load_config_file(path: Path) -> dict[str, Any]:
    """Load configuration from a file, detecting format from extension."""
    if not path.exists():
        return {}

    suffix = path.suffix.lower()
    if suffix == ".toml":
        return load_toml_config(path)
    elif suffix == ".json":
        return load_json_config(path)
    else:
        logger.warning(f"Unknown config file format: {suffix}")
        return {}


ENV_MAPPINGS: dict[str, tuple[str, str]] = {
    "TOPFRAG_LOG_LEVEL": ("logging", "level"),
    "TOPFRAG_LOG_FILE": ("logging", "file"),
    "TOPFRAG_DATABASE_URL": ("database", "url"),
    "TOPFRAG_DB_PATH": ("database", "path"),
    "TOPFRAG_CACHE_ENABLED": ("cache", "enabled"),
    "TOPFRAG_CACHE_TTL": ("cache", "ttl_seconds"),
    "TOPFRAG_JWT_SECRET": ("auth", "jwt_secret"),
    "TOPFRAG_JWT_EXPIRY_HOURS": ("auth", "jwt_expiry_hours"),
    "TOPFRAG_API_KEY": ("auth", "api_key"),
    "TOPFRAG_PARSER_URL": ("parser_service", "base_url"),
    "TOPFRAG_PARSER_API_KEY": ("parser_service", "api_key"),
    "TOPFRAG_APP_URL": ("parser_service", "app_url"),
    "TOPFRAG_FRONTEND_URL": ("steam", "frontend_url"),
    "TOPFRAG_UPLOAD_DIR": ("upload", "storage_dir"),
    "TOPFRAG_MAX_UPLOAD_BYTES": ("upload", "max_file_size"),
    "TOPFRAG_DISCORD_APPLICATION_ID": ("discord", "application_id"),
    # Conventional names used by the hosting environment
    "JWT_SECRET": ("auth", "jwt_secret"),
    "STEAM_API_KEY": ("steam", "api_key"),
    "FACEIT_API_KEY": ("faceit", "api_key"),
    "DISCORD_PUBLIC_KEY": ("discord", "public_key"),
    "DISCORD_BOT_TOKEN": ("discord", "bot_token"),
    "DISCORD_CLIENT_ID": ("discord", "client_id"),
    "DISCORD_CLIENT_SECRET": ("discord", "client_secret"),
    "DISCORD_REDIRECT_URI": ("discord", "redirect_uri"),
}


def _convert_env_value(value: str) -> Any:
    """Convert an environment string to bool, int or float where it parses."""
    if value.lower() in ("true", "false"):
        return value.lower() == "true"
    if value.isdigit():
        return int(value)
    try:
        return float(value)
    except ValueError:
        return value


def load_env_config() -> dict[str, Any]:
    """Load configuration from environment variables."""
    config: dict[str, Any] = {}

    for env_var, (section, key) in ENV_MAPPINGS.items():
        value = os.environ.get(env_var)
        if value is None:
            continue
        config.setdefault(section, {})[key] = _convert_env_value(value)

    return config


def merge_configs(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge two configuration dictionaries."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = merge_configs(result[key], value)
        else:
            result[key] = value

    return result


def dict_to_config(data: dict[str, Any]) -> TopFragConfig:
    """Convert a dictionary to TopFragConfig, ignoring unknown keys."""
    config = TopFragConfig()

    for section_field in fields(config):
        section_data = data.get(section_field.name)
        if not isinstance(section_data, dict):
            continue
        section = getattr(config, section_field.name)
        for key, value in section_data.items():
            if not hasattr(section, key):
                continue
            # Keys and ids that happen to be numeric stay strings
            if isinstance(getattr(section, key), str) and not isinstance(value, str):
                value = str(value)
            setattr(section, key, value)

    return config


def load_config(config_file: Path | None = None, include_env: bool = True) -> TopFragConfig:
    """
    Load configuration from all sources.

    Args:
        config_file: Explicit path to a config file (optional)
        include_env: Whether to include environment variables

    Returns:
        Merged TopFragConfig
    """
    config_data: dict[str, Any] = {}

    if config_file:
        config_data = load_config_file(config_file)
        logger.info(f"Loaded config from: {config_file}")
    else:
        for path in get_default_config_paths():
            if path.exists():
                config_data = load_config_file(path)
                logger.info(f"Loaded config from: {path}")
                break

    if include_env:
        config_data = merge_configs(config_data, load_env_config())

    return dict_to_config(config_data)


def config_to_dict(config: TopFragConfig) -> dict[str, Any]:
    """Convert TopFragConfig to a dictionary."""
    return asdict(config)


# ============================================================================
# Logging Setup
# ============================================================================


def configure_logging(config: LoggingConfig | None = None) -> None:
    """Install the root handlers described by the logging configuration."""
    if config is None:
        config = get_config().logging

    root = logging.getLogger()
    root.setLevel(getattr(logging, str(config.level).upper(), logging.INFO))
    formatter = logging.Formatter(config.format)

    for handler in list(root.handlers):
        if getattr(handler, "_topfrag", False):
            root.removeHandler(handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    stream_handler._topfrag = True  # type: ignore[attr-defined]
    root.addHandler(stream_handler)

    if config.file:
        Path(config.file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            config.file,
            maxBytes=config.file_max_bytes,
            backupCount=config.file_backup_count,
        )
        file_handler.setFormatter(formatter)
        file_handler._topfrag = True  # type: ignore[attr-defined]
        root.addHandler(file_handler)


# ============================================================================
# Global Configuration
# ============================================================================

_global_config: TopFragConfig | None = None


def get_config() -> TopFragConfig:
    """Get the global configuration, loading it if necessary."""
    global _global_config

    if _global_config is None:
        _global_config = load_config()

    return _global_config


def set_config(config: TopFragConfig) -> None:
    """Set the global configuration."""
    global _global_config
    _global_config = config


def reset_config() -> None:
    """Reset the global configuration to defaults."""
    global _global_config
    _global_config = None
