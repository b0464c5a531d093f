"""Bootstrap and dependency wiring for the site monitor.

This module provides the startup and initialization logic, including:
- Configuration loading with CLI overrides
- Logging setup
- Sample store initialization (falls back to no persistence on failure)
- Notifier selection
- SiteMonitor assembly

The bootstrap module acts as the composition root, wiring together all
dependencies before the application starts running.
"""

from __future__ import annotations

import argparse
from collections.abc import Callable
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from sitemonitor.alerts import Notifier, create_notifier
from sitemonitor.config import Config, ConfigurationError, load_config
from sitemonitor.logging import get_logger, setup_logging
from sitemonitor.probe import HttpProbe
from sitemonitor.storage import (
    NullSampleSink,
    SampleSink,
    StorageUnavailableError,
    create_sample_sink,
)

if TYPE_CHECKING:
    from sitemonitor.main import SiteMonitor

logger = get_logger(__name__)


class BootstrapContext:
    """Container for all bootstrapped dependencies."""

    def __init__(
        self,
        config: Config,
        prober: HttpProbe,
        sink: SampleSink,
        notifier: Notifier,
        config_loader: Callable[[], Config] | None = None,
    ) -> None:
        """Initialize the bootstrap context.

        Args:
            config: Application configuration.
            prober: HTTP prober shared by all samples.
            sink: Sample sink (database or null).
            notifier: Alert delivery transport.
            config_loader: Reloads configuration for dynamic reset.
        """
        self.config = config
        self.prober = prober
        self.sink = sink
        self.notifier = notifier
        self.config_loader = config_loader


def apply_cli_overrides(config: Config, parsed: argparse.Namespace) -> Config:
    """Apply CLI argument overrides to the configuration.

    Args:
        config: Configuration loaded from the file and environment.
        parsed: Parsed command-line arguments.

    Returns:
        New Config instance with CLI overrides applied.
    """
    database_overrides: dict[str, Any] = {}
    if parsed.dbname:
        database_overrides["database"] = parsed.dbname
    if parsed.dbuser:
        database_overrides["user"] = parsed.dbuser
    if parsed.dbpass:
        database_overrides["password"] = parsed.dbpass
    if parsed.dbhost:
        database_overrides["host"] = parsed.dbhost
    if parsed.dbport:
        database_overrides["port"] = parsed.dbport

    logging_overrides: dict[str, Any] = {}
    if parsed.verbose:
        logging_overrides["level"] = "DEBUG"
        if not config.logging_config.diagnostic_tags:
            logging_overrides["diagnostic_tags"] = "*"
    if parsed.log_level:
        logging_overrides["level"] = parsed.log_level

    overrides: dict[str, Any] = {}
    if database_overrides:
        overrides["database"] = replace(config.database, **database_overrides)
    if logging_overrides:
        overrides["logging_config"] = replace(config.logging_config, **logging_overrides)

    if overrides:
        return replace(config, **overrides)
    return config


def load_effective_config(parsed: argparse.Namespace) -> Config:
    """Load configuration and apply CLI overrides.

    Raises:
        ConfigurationError: If the configuration file is invalid.
    """
    config = load_config(parsed.config, parsed.env_file)
    return apply_cli_overrides(config, parsed)


def create_sink(config: Config) -> SampleSink:
    """Create the sample sink, degrading to no persistence if storage is unusable."""
    try:
        sink = create_sample_sink(config.database, config.storage_breaker)
    except (StorageUnavailableError, ConfigurationError) as e:
        logger.warning("Sample store unavailable, samples will not be persisted: %s", e)
        return NullSampleSink()

    update_sites = getattr(sink, "update_sites", None)
    if callable(update_sites):
        update_sites(config.sites)
    return sink


def bootstrap(parsed: argparse.Namespace) -> BootstrapContext | None:
    """Bootstrap the application with all dependencies.

    This is the main entry point for application initialization. It:
    1. Loads and configures settings
    2. Sets up logging
    3. Initializes storage, the prober and the notifier

    Args:
        parsed: Parsed command-line arguments.

    Returns:
        BootstrapContext with all initialized dependencies, or None if the
        configuration is unusable.
    """
    try:
        config = load_effective_config(parsed)
    except ConfigurationError as e:
        # Logging is not configured yet; make sure the error is visible
        setup_logging("INFO")
        logger.error("Invalid configuration: %s", e)
        return None

    setup_logging(
        config.logging_config.level,
        json_format=config.logging_config.json,
        diagnostic_tags=config.logging_config.diagnostic_tags,
        log_file=config.logging_config.file,
    )

    logger.info(
        "Loaded %d site(s), %d active", len(config.sites), len(config.active_sites)
    )

    sink = create_sink(config)
    prober = HttpProbe(
        timeout=config.scheduler.probe_timeout,
        user_agent=config.scheduler.user_agent,
    )
    notifier = create_notifier(config.mail)

    return BootstrapContext(
        config=config,
        prober=prober,
        sink=sink,
        notifier=notifier,
        config_loader=lambda: load_effective_config(parsed),
    )


def create_monitor_from_context(context: BootstrapContext) -> SiteMonitor:
    """Create a SiteMonitor from a bootstrap context.

    Args:
        context: Bootstrap context with all initialized dependencies.

    Returns:
        Configured SiteMonitor instance, not yet started.
    """
    from sitemonitor.alerts import AlertDispatcher
    from sitemonitor.main import SiteMonitor
    from sitemonitor.scheduler import SiteScheduler

    dispatcher = AlertDispatcher(context.notifier)
    scheduler = SiteScheduler(
        context.config.sites,
        prober=context.prober,
        sink=context.sink,
        dispatcher=dispatcher,
    )
    return SiteMonitor(
        config=context.config,
        scheduler=scheduler,
        sink=context.sink,
        dispatcher=dispatcher,
        config_loader=context.config_loader,
    )


# NOTE: Update this list when adding new exports to this module.
__all__ = [
    "BootstrapContext",
    "apply_cli_overrides",
    "bootstrap",
    "create_monitor_from_context",
    "create_sink",
    "load_effective_config",
]
