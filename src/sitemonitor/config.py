"""Configuration loading from the configuration file and environment variables.

Settings are layered, lowest precedence first:

1. The configuration file (JSON or YAML) holding the site list and the
   ``database``, ``smtp``/``mailgun`` and web sections.
2. Environment variables, optionally loaded from a ``.env`` file.
3. Command-line overrides, applied later by :func:`sitemonitor.bootstrap.apply_cli_overrides`.

Invalid scalar settings log a warning and fall back to their defaults.
Invalid site definitions raise :class:`ConfigurationError` so that the
operator sees the problem before any sampling starts.
"""

from __future__ import annotations

import logging
import math
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError

from sitemonitor.circuit_breaker import CircuitBreakerConfig
from sitemonitor.types import NotifierType

# Valid log levels
VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

# Port validation bounds
MIN_PORT = 1
MAX_PORT = 65535

DEFAULT_CONFIG_FILE = Path("./configuration.json")
DEFAULT_WEB_PORT = 3399
DEFAULT_DB_PORT = 3306
DEFAULT_DB_DRIVER = "mysql+pymysql"


class ConfigurationError(ValueError):
    """Raised when the site list or configuration file is unusable."""

    pass


@dataclass(frozen=True)
class SiteConfig:
    """Policy for one monitored site.

    Attributes:
        name: Unique site identifier.
        url: URL requested by every sample.
        expected_token: Text that must appear in a healthy response body.
            An empty token always matches.
        sample_interval: Seconds between the end of one sample and the next.
        alert_load_time: Responses slower than this many seconds count as failures.
        alert_threshold: Consecutive slow responses needed to send an alert.
        active: Inactive sites are never sampled.
        alert_emails: Alert destinations.
        max_load_time: Informational limit stored in the sites table.
    """

    name: str
    url: str
    expected_token: str = ""
    sample_interval: float = 60.0
    alert_load_time: float = 10.0
    alert_threshold: int = 3
    active: bool = True
    alert_emails: tuple[str, ...] = ()
    max_load_time: float = 0.0


@dataclass(frozen=True)
class SchedulerConfig:
    """Sampling behaviour shared by every site."""

    # Upper bound for a single probe, so a hung server cannot stall every other site
    probe_timeout: float = 30.0
    # How long shutdown waits for an in-flight probe to settle
    shutdown_grace_seconds: float = 10.0
    user_agent: str = "site-monitor"


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings for the sample store.

    Either ``url`` (a full SQLAlchemy URL) or ``host`` plus ``user`` must be set
    for the database to be used.
    """

    url: str = ""
    driver: str = DEFAULT_DB_DRIVER
    host: str = ""
    port: int = DEFAULT_DB_PORT
    user: str = ""
    password: str = ""
    database: str = ""

    @property
    def configured(self) -> bool:
        """Check if enough settings are present to connect."""
        return bool(self.url or (self.host and self.user))

    def sqlalchemy_url(self) -> URL:
        """Build the SQLAlchemy URL for this configuration.

        Raises:
            ConfigurationError: If the database is not configured or the URL is invalid.
        """
        if self.url:
            try:
                return make_url(self.url)
            except ArgumentError as e:
                raise ConfigurationError(f"Invalid DATABASE_URL: {e}") from e
        if not self.configured:
            raise ConfigurationError("Database is not configured")
        return URL.create(
            self.driver,
            username=self.user,
            password=self.password or None,
            host=self.host,
            port=self.port,
            database=self.database or None,
        )


@dataclass(frozen=True)
class MailConfig:
    """Alert delivery settings. Mailgun is preferred when both are configured."""

    mailgun_api_key: str = ""
    mailgun_domain: str = ""
    mailgun_api_url: str = "https://api.mailgun.net/v3"
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    sender: str = '"Site Monitor" <monitor@localhost>'

    @property
    def transport(self) -> NotifierType:
        """Delivery transport selected by the configured credentials."""
        if self.mailgun_api_key and self.mailgun_domain:
            return NotifierType.MAILGUN
        if self.smtp_host:
            return NotifierType.SMTP
        return NotifierType.NONE


@dataclass(frozen=True)
class DashboardConfig:
    """Status and shutdown web endpoints."""

    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = DEFAULT_WEB_PORT
    # Empty password disables the privileged views of /status and /stop
    shutdown_password: str = ""


@dataclass(frozen=True)
class LoggingConfig:
    """Logging output settings."""

    level: str = "INFO"
    json: bool = False
    file: Path | None = None
    diagnostic_tags: str = ""


@dataclass(frozen=True)
class Config:
    """Application configuration.

    This dataclass is frozen (immutable) to prevent accidental modification
    after creation. Use ``dataclasses.replace`` to derive variants.
    """

    sites: tuple[SiteConfig, ...] = ()
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    mail: MailConfig = field(default_factory=MailConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)
    logging_config: LoggingConfig = field(default_factory=LoggingConfig)
    storage_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)

    @property
    def active_sites(self) -> tuple[SiteConfig, ...]:
        """Sites that will be sampled."""
        return tuple(site for site in self.sites if site.active)


def _parse_positive_int(value: str, name: str, default: int) -> int:
    """Parse a string as a positive integer with validation.

    Args:
        value: The string value to parse.
        name: The name of the setting (for error messages).
        default: The default value to use if parsing fails.

    Returns:
        The parsed positive integer, or the default if invalid.
    """
    try:
        parsed = int(value)
        if parsed <= 0:
            logging.warning(
                "Invalid %s: %d is not positive, using default %d",
                name,
                parsed,
                default,
            )
            return default
        return parsed
    except ValueError:
        logging.warning(
            "Invalid %s: '%s' is not a valid integer, using default %d",
            name,
            value,
            default,
        )
        return default


def _parse_port(value: str, name: str, default: int) -> int:
    """Parse a string as a valid TCP port number with range validation.

    Args:
        value: The string value to parse.
        name: The name of the setting (for error messages).
        default: The default value to use if parsing fails.

    Returns:
        The parsed port number (MIN_PORT-MAX_PORT), or the default if invalid.
    """
    try:
        parsed = int(value)
        if parsed < MIN_PORT or parsed > MAX_PORT:
            logging.warning(
                "Invalid %s: %d is not a valid port (must be %d-%d), using default %d",
                name,
                parsed,
                MIN_PORT,
                MAX_PORT,
                default,
            )
            return default
        return parsed
    except ValueError:
        logging.warning(
            "Invalid %s: '%s' is not a valid integer, using default %d",
            name,
            value,
            default,
        )
        return default


def _parse_positive_float(value: str, name: str, default: float) -> float:
    """Parse a string as a strictly positive float with validation.

    Args:
        value: The string value to parse.
        name: The name of the setting (for error messages).
        default: The default value to use if parsing fails.

    Returns:
        The parsed float, or the default if invalid.
    """
    try:
        parsed = float(value)
        if parsed <= 0:
            logging.warning(
                "Invalid %s: %f is not positive, using default %f",
                name,
                parsed,
                default,
            )
            return default
        return parsed
    except ValueError:
        logging.warning(
            "Invalid %s: '%s' is not a valid number, using default %f",
            name,
            value,
            default,
        )
        return default


def _validate_log_level(value: str, default: str = "INFO") -> str:
    """Validate and normalize a log level string.

    Args:
        value: The log level string to validate.
        default: The default value to use if invalid.

    Returns:
        The validated log level (uppercase), or the default if invalid.
    """
    normalized = value.upper()
    if normalized not in VALID_LOG_LEVELS:
        logging.warning(
            "Invalid MONITOR_LOG_LEVEL: '%s' is not valid, using default '%s'. Valid values: %s",
            value,
            default,
            ", ".join(sorted(VALID_LOG_LEVELS)),
        )
        return default
    return normalized


def _parse_bool(value: str) -> bool:
    """Parse a string as a boolean.

    Returns:
        True if value is "true", "1", or "yes" (case-insensitive), False otherwise.
    """
    return value.lower() in ("true", "1", "yes")


def _as_bool(value: Any) -> bool:
    """Interpret a configuration-file value (bool, number or string) as a boolean."""
    if isinstance(value, str):
        return _parse_bool(value)
    return bool(value)


def _require_number(
    site_name: str, key: str, value: Any, *, integer: bool = False, allow_zero: bool = False
) -> float:
    if isinstance(value, bool):
        raise ConfigurationError(f"Site '{site_name}': {key} must be a number, not a boolean")
    try:
        number = int(value) if integer else float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Site '{site_name}': {key} must be a number, got {value!r}") from e
    if not math.isfinite(number):
        raise ConfigurationError(f"Site '{site_name}': {key} must be finite, got {value!r}")
    if number < 0 or (number == 0 and not allow_zero):
        qualifier = "non-negative" if allow_zero else "positive"
        raise ConfigurationError(f"Site '{site_name}': {key} must be {qualifier}, got {value!r}")
    return number


def parse_site(data: Mapping[str, Any]) -> SiteConfig:
    """Build a SiteConfig from one entry of the ``sites`` list.

    Args:
        data: Mapping using the configuration file keys (``sitename``,
            ``sampleurl``, ``expectedtoken``, ``samplefrequency``,
            ``alertloadtime``, ``alertthreshold``, ``active``, ``alertemail``,
            ``maxloadtime``).

    Returns:
        The validated site configuration.

    Raises:
        ConfigurationError: If a required field is missing or a value is invalid.
    """
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Site entries must be mappings, got {type(data).__name__}")

    name = str(data.get("sitename") or "").strip()
    if not name:
        raise ConfigurationError("Site entry is missing 'sitename'")
    url = str(data.get("sampleurl") or "").strip()
    if not url:
        raise ConfigurationError(f"Site '{name}' is missing 'sampleurl'")
    if not url.startswith(("http://", "https://")):
        raise ConfigurationError(f"Site '{name}': sampleurl must be an http(s) URL, got {url!r}")

    emails = data.get("alertemail") or []
    if isinstance(emails, str):
        emails = [emails]
    if not isinstance(emails, list):
        raise ConfigurationError(f"Site '{name}': alertemail must be a list of addresses")

    return SiteConfig(
        name=name,
        url=url,
        expected_token=str(data.get("expectedtoken") or ""),
        sample_interval=_require_number(name, "samplefrequency", data.get("samplefrequency", 60)),
        alert_load_time=_require_number(name, "alertloadtime", data.get("alertloadtime", 10)),
        alert_threshold=int(
            _require_number(name, "alertthreshold", data.get("alertthreshold", 3), integer=True)
        ),
        active=_as_bool(data.get("active", True)),
        alert_emails=tuple(str(e).strip() for e in emails if str(e).strip()),
        max_load_time=_require_number(
            name, "maxloadtime", data.get("maxloadtime") or 0, allow_zero=True
        ),
    )


def load_sites(entries: Any) -> tuple[SiteConfig, ...]:
    """Validate the ``sites`` list of a configuration file.

    Args:
        entries: The raw ``sites`` value. ``None`` means no sites.

    Returns:
        Site configurations in file order.

    Raises:
        ConfigurationError: If the list is malformed or names are not unique.
    """
    if entries is None:
        return ()
    if not isinstance(entries, list):
        raise ConfigurationError("'sites' must be a list")

    sites = tuple(parse_site(entry) for entry in entries)
    check_unique_names(sites)
    return sites


def check_unique_names(sites: Iterable[SiteConfig]) -> None:
    """Raise ConfigurationError if two sites share a name."""
    seen: set[str] = set()
    for site in sites:
        if site.name in seen:
            raise ConfigurationError(f"Duplicate site name '{site.name}'")
        seen.add(site.name)


def read_config_file(path: Path) -> dict[str, Any]:
    """Read a JSON or YAML configuration file.

    A missing file yields an empty mapping; the caller decides whether that is
    an error.

    Raises:
        ConfigurationError: If the file cannot be parsed or is not a mapping.
    """
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Configuration file {path} is not valid JSON/YAML: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping")
    return data


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, Mapping):
        raise ConfigurationError(f"'{key}' section must be a mapping")
    return value


def load_config(config_file: Path | None = None, env_file: Path | None = None) -> Config:
    """Load configuration from the configuration file and environment variables.

    Args:
        config_file: Path to the JSON/YAML configuration file. Defaults to
            ``./configuration.json``.
        env_file: Optional path to .env file. If not provided,
            looks for .env in current directory.

    Returns:
        Config object with loaded values.

    Raises:
        ConfigurationError: If the configuration file or its site list is invalid.
    """
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    path = config_file or DEFAULT_CONFIG_FILE
    data = read_config_file(path)
    if not data:
        logging.warning("Configuration file %s does not exist or is empty", path)

    sites = load_sites(data.get("sites"))
    db_section = _section(data, "database")
    smtp_section = _section(data, "smtp")
    mailgun_section = _section(data, "mailgun")

    # Logging
    log_level = _validate_log_level(
        os.getenv("MONITOR_LOG_LEVEL", "DEBUG" if _as_bool(data.get("verbose", False)) else "INFO")
    )
    log_file_str = os.getenv("MONITOR_LOG_FILE", str(data.get("logFile") or ""))
    logging_config = LoggingConfig(
        level=log_level,
        json=_parse_bool(os.getenv("MONITOR_LOG_JSON", "")),
        file=Path(log_file_str) if log_file_str else None,
        diagnostic_tags=os.getenv("MONITOR_DIAGNOSTIC_TAGS", ""),
    )

    scheduler = SchedulerConfig(
        probe_timeout=_parse_positive_float(
            os.getenv("MONITOR_PROBE_TIMEOUT", "30"), "MONITOR_PROBE_TIMEOUT", 30.0
        ),
        shutdown_grace_seconds=_parse_positive_float(
            os.getenv("MONITOR_SHUTDOWN_GRACE_SECONDS", "10"),
            "MONITOR_SHUTDOWN_GRACE_SECONDS",
            10.0,
        ),
        user_agent=os.getenv("MONITOR_USER_AGENT", "site-monitor"),
    )

    # Environment has precedence over the file for database settings
    database = DatabaseConfig(
        url=os.getenv("DATABASE_URL", str(db_section.get("url") or "")),
        driver=os.getenv("DB_DRIVER", str(db_section.get("driver") or DEFAULT_DB_DRIVER)),
        host=os.getenv("DB_HOST", str(db_section.get("host") or "")),
        port=_parse_port(
            os.getenv("DB_PORT", str(db_section.get("port") or DEFAULT_DB_PORT)),
            "DB_PORT",
            DEFAULT_DB_PORT,
        ),
        user=os.getenv("DB_USER", str(db_section.get("user") or "")),
        password=os.getenv("DB_PASS", str(db_section.get("password") or "")),
        database=os.getenv("DB_NAME", str(db_section.get("database") or "")),
    )

    mail = MailConfig(
        mailgun_api_key=os.getenv(
            "MAILGUN_API_KEY",
            str(mailgun_section.get("apikey") or smtp_section.get("apikey") or ""),
        ),
        mailgun_domain=os.getenv(
            "MAILGUN_DOMAIN",
            str(mailgun_section.get("domain") or smtp_section.get("domain") or ""),
        ),
        smtp_host=os.getenv("SMTP_HOST", str(smtp_section.get("host") or "")),
        smtp_port=_parse_port(
            os.getenv("SMTP_PORT", str(smtp_section.get("port") or 587)), "SMTP_PORT", 587
        ),
        smtp_user=os.getenv("SMTP_USER", str(smtp_section.get("user") or "")),
        smtp_password=os.getenv("SMTP_PASSWORD", str(smtp_section.get("password") or "")),
        sender=os.getenv("MONITOR_MAIL_FROM", str(smtp_section.get("from") or MailConfig.sender)),
    )

    dashboard = DashboardConfig(
        enabled=_parse_bool(os.getenv("MONITOR_WEB_ENABLED", "true")),
        host=os.getenv("MONITOR_WEB_HOST", "127.0.0.1"),
        port=_parse_port(
            os.getenv("MONITOR_WEB_PORT", str(data.get("websiteport") or DEFAULT_WEB_PORT)),
            "MONITOR_WEB_PORT",
            DEFAULT_WEB_PORT,
        ),
        shutdown_password=os.getenv(
            "MONITOR_SHUTDOWN_PASSWORD", str(data.get("shutdownpassword") or "")
        ),
    )

    storage_breaker = CircuitBreakerConfig(
        failure_threshold=_parse_positive_int(
            os.getenv("MONITOR_STORAGE_FAILURE_THRESHOLD", "3"),
            "MONITOR_STORAGE_FAILURE_THRESHOLD",
            3,
        ),
        recovery_timeout=_parse_positive_float(
            os.getenv("MONITOR_STORAGE_RECOVERY_TIMEOUT", "300"),
            "MONITOR_STORAGE_RECOVERY_TIMEOUT",
            300.0,
        ),
    )

    return Config(
        sites=sites,
        scheduler=scheduler,
        database=database,
        mail=mail,
        dashboard=dashboard,
        logging_config=logging_config,
        storage_breaker=storage_breaker,
    )


__all__ = [
    "Config",
    "ConfigurationError",
    "DashboardConfig",
    "DatabaseConfig",
    "LoggingConfig",
    "MailConfig",
    "SchedulerConfig",
    "SiteConfig",
    "check_unique_names",
    "load_config",
    "load_sites",
    "parse_site",
    "read_config_file",
]
