"""
Centralized configuration loader for the blogflow service.

Loads settings from a YAML file and environment variables, providing
sensible defaults when the configuration file is absent.

Provides:
    - Settings: Global application settings loaded from YAML + env vars
    - get_settings(): Singleton accessor for Settings
    - reset_settings(): Drop the cached Settings (tests, config reloads)
    - validate_env(): Startup validation of required environment variables
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import yaml
from dotenv import load_dotenv

from blogflow.exceptions import ConfigurationError

# ---------------------------------------------------------------------------
# Load .env file (no-op if file does not exist)
# ---------------------------------------------------------------------------
load_dotenv()

# ---------------------------------------------------------------------------
# Project root directory (parent of blogflow/)
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent

logger = logging.getLogger(__name__)

SUPPORTED_SOCIAL_PLATFORMS: Tuple[str, ...] = ("twitter", "linkedin", "facebook")


# ===========================================================================
# GLOBAL SETTINGS
# ===========================================================================


@dataclass
class Settings:
    """
    Global application settings.

    Loaded from ``config/settings.yaml`` when available, falling back to
    defaults. Environment variables override YAML values for secrets and
    deployment-specific configuration.
    """

    # Public site (used for published URLs and the sitemap)
    site_url: str = "http://localhost:3000"

    # Collaborative editing
    session_ttl_minutes: int = 30

    # Publishing queue
    queue_max_attempts: int = 3
    stuck_timeout_minutes: int = 10

    # Versioning: retries when a concurrent writer takes the next number
    version_create_attempts: int = 3

    # Side effects
    sitemap_bucket: str = "public-assets"
    sitemap_path: str = "sitemap.xml"
    notification_service_url: Optional[str] = None
    notification_api_key: Optional[str] = None
    notification_timeout_seconds: float = 10.0
    default_social_platforms: List[str] = field(
        default_factory=lambda: ["twitter", "linkedin"]
    )

    # Sweep endpoints
    cron_secret: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"
    db_log_min_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.session_ttl_minutes <= 0:
            raise ConfigurationError(
                f"session_ttl_minutes must be positive, got {self.session_ttl_minutes}"
            )
        if self.queue_max_attempts <= 0:
            raise ConfigurationError(
                f"queue_max_attempts must be positive, got {self.queue_max_attempts}"
            )
        unknown = set(self.default_social_platforms) - set(SUPPORTED_SOCIAL_PLATFORMS)
        if unknown:
            raise ConfigurationError(
                f"Unknown social platforms {sorted(unknown)}. "
                f"Valid platforms: {list(SUPPORTED_SOCIAL_PLATFORMS)}"
            )
        self.site_url = self.site_url.rstrip("/")

    @classmethod
    def from_yaml(cls, path: Optional[Path] = None) -> "Settings":
        """
        Load settings from a YAML file.

        If the file does not exist, returns an instance with all defaults
        (plus environment overrides).

        Args:
            path: Path to the YAML file. Defaults to
                ``<PROJECT_ROOT>/config/settings.yaml``.

        Returns:
            Populated Settings instance.

        Raises:
            ConfigurationError: If the YAML file exists but cannot be parsed,
                or an environment override has an invalid value.
        """
        path = path or PROJECT_ROOT / "config" / "settings.yaml"

        data: Dict[str, Any] = {}
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as fh:
                    data = yaml.safe_load(fh) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(
                    f"Failed to parse settings YAML at {path}: {exc}"
                ) from exc

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Settings YAML at {path} must be a mapping, got {type(data).__name__}"
            )

        # Flatten the nested YAML sections onto dataclass field names
        kwargs: Dict[str, Any] = {}
        sections = {
            "collaboration": {
                "session_ttl_minutes": "session_ttl_minutes",
            },
            "publishing": {
                "max_attempts": "queue_max_attempts",
                "stuck_timeout_minutes": "stuck_timeout_minutes",
                "sitemap_bucket": "sitemap_bucket",
                "sitemap_path": "sitemap_path",
                "default_social_platforms": "default_social_platforms",
                "notification_service_url": "notification_service_url",
                "notification_timeout_seconds": "notification_timeout_seconds",
            },
            "versioning": {
                "create_attempts": "version_create_attempts",
            },
            "logging": {
                "level": "log_level",
                "dir": "log_dir",
                "db_min_level": "db_log_min_level",
            },
        }
        for section, mapping in sections.items():
            section_data = data.get(section) or {}
            for yaml_key, attr in mapping.items():
                if yaml_key in section_data:
                    kwargs[attr] = section_data[yaml_key]
        if "site_url" in data:
            kwargs["site_url"] = data["site_url"]

        # -----------------------------------------------------------------
        # Environment variable overrides
        # -----------------------------------------------------------------
        env_overrides: Dict[str, Tuple[str, Callable[[str], Any]]] = {
            "SITE_URL": ("site_url", str),
            "SESSION_TTL_MINUTES": ("session_ttl_minutes", int),
            "QUEUE_MAX_ATTEMPTS": ("queue_max_attempts", int),
            "STUCK_TIMEOUT_MINUTES": ("stuck_timeout_minutes", int),
            "SITEMAP_BUCKET": ("sitemap_bucket", str),
            "NOTIFICATION_SERVICE_URL": ("notification_service_url", str),
            "NOTIFICATION_API_KEY": ("notification_api_key", str),
            "CRON_SECRET": ("cron_secret", str),
            "LOG_LEVEL": ("log_level", str),
            "LOG_DIR": ("log_dir", str),
        }
        for env_key, (attr_name, cast_fn) in env_overrides.items():
            env_val = os.environ.get(env_key)
            if env_val is not None and env_val != "":
                try:
                    kwargs[attr_name] = cast_fn(env_val)
                except (ValueError, TypeError) as exc:
                    raise ConfigurationError(
                        f"Invalid value for env var {env_key}='{env_val}': {exc}"
                    ) from exc

        return cls(**kwargs)


# ===========================================================================
# SINGLETON SETTINGS ACCESSOR
# ===========================================================================

_settings_instance: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the global Settings singleton.

    On first call, loads from ``config/settings.yaml`` (or defaults).
    Subsequent calls return the cached instance.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings.from_yaml()
    return _settings_instance


def reset_settings() -> None:
    """
    Reset the cached Settings singleton.

    Useful for testing or when configuration files have been updated
    at runtime.
    """
    global _settings_instance
    _settings_instance = None


# ===========================================================================
# ENVIRONMENT VARIABLE VALIDATION
# ===========================================================================

# Required environment variables for the service to function
REQUIRED_ENV_VARS: List[str] = [
    "SUPABASE_URL",
    "SUPABASE_SERVICE_KEY",
]

# Optional but recommended environment variables
OPTIONAL_ENV_VARS: List[str] = [
    "SITE_URL",
    "NOTIFICATION_SERVICE_URL",
    "NOTIFICATION_API_KEY",
    "CRON_SECRET",
]


def validate_env(strict: bool = True) -> Dict[str, bool]:
    """
    Validate that required environment variables are set.

    Args:
        strict: If ``True``, raise ``ConfigurationError`` when any required
            variable is missing. If ``False``, return the status dict
            without raising.

    Returns:
        Dict mapping variable name to presence status (``True`` if set).

    Raises:
        ConfigurationError: If ``strict=True`` and required vars are missing.
    """
    status: Dict[str, bool] = {}
    missing: List[str] = []

    for var in REQUIRED_ENV_VARS:
        present = bool(os.environ.get(var))
        status[var] = present
        if not present:
            missing.append(var)

    for var in OPTIONAL_ENV_VARS:
        status[var] = bool(os.environ.get(var))

    if strict and missing:
        raise ConfigurationError(
            f"Missing required environment variables: {missing}. "
            f"Copy .env.example to .env and fill in the values."
        )

    return status


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "PROJECT_ROOT",
    "SUPPORTED_SOCIAL_PLATFORMS",
    "Settings",
    "get_settings",
    "reset_settings",
    "validate_env",
    "REQUIRED_ENV_VARS",
    "OPTIONAL_ENV_VARS",
]
