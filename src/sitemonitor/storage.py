"""Sample persistence.

Samples are written to two tables defined with SQLAlchemy Core:

- ``monitor_sites``: one row per configured site, refreshed at startup and
  on dynamic reset.
- ``monitor_samples``: one append-only row per sample, indexed by site and
  time for historical reporting.

Storage is a soft dependency of the sampling loop. ``append`` never raises:
failures are logged, counted by a circuit breaker and reported as ``False``.
Once the breaker opens, writes are skipped without touching the database until
the recovery timeout has elapsed.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Engine,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.exc import SQLAlchemyError

from sitemonitor.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from sitemonitor.classifier import SampleRecord
from sitemonitor.config import DatabaseConfig, SiteConfig
from sitemonitor.logging import get_logger

logger = get_logger(__name__)

# Column width of the free-text sample columns
MESSAGE_MAX_LENGTH = 500

SAMPLE_TYPE = "sample"

metadata = MetaData()

sites_table = Table(
    "monitor_sites",
    metadata,
    Column("monitor_site_id", Integer, primary_key=True, autoincrement=True),
    Column("site_name", String(80), nullable=False, unique=True),
    Column("site_url", String(255), nullable=False),
    Column("search_token", String(255), nullable=False, default=""),
    # Milliseconds
    Column("max_response_time", Integer, nullable=False, default=0),
    Column("active", Boolean, nullable=False, default=True),
)

samples_table = Table(
    "monitor_samples",
    metadata,
    Column("monitor_sample_id", Integer, primary_key=True, autoincrement=True),
    Column("site_name", String(80), nullable=False),
    Column("sample_type", String(20), nullable=False, default=SAMPLE_TYPE),
    Column("sample_time", DateTime(timezone=True), nullable=False, server_default=func.now()),
    # Milliseconds
    Column("response_time", Integer, nullable=False, default=0),
    Column("status_code", Integer, nullable=False, default=0),
    Column("error_code", String(20), nullable=False, default="OK"),
    Column("error_message", String(MESSAGE_MAX_LENGTH), nullable=True),
    Column("sample_data", String(MESSAGE_MAX_LENGTH), nullable=True),
    Index("ix_monitor_samples_site_time", "site_name", "sample_time"),
)


class StorageUnavailableError(Exception):
    """Raised when the sample store cannot be initialized."""

    pass


class SampleSink(Protocol):
    """Destination for classified samples."""

    def append(self, record: SampleRecord) -> bool:
        """Persist one sample. Returns False instead of raising on failure."""
        ...


class NullSampleSink:
    """Sink used when no database is configured. Every append is dropped."""

    def append(self, record: SampleRecord) -> bool:
        logger.debug("No sample store configured, dropping sample for %s", record.site_name)
        return False

    def update_sites(self, sites: Iterable[SiteConfig]) -> None:
        pass

    def close(self) -> None:
        pass


def _truncate(value: str | None) -> str | None:
    if value is None:
        return None
    return value[:MESSAGE_MAX_LENGTH]


class DatabaseSampleStore:
    """Sample store backed by a SQLAlchemy engine.

    Example:
        store = DatabaseSampleStore(create_engine("sqlite:///samples.db"))
        store.initialize()
        store.update_sites(config.sites)
        store.append(record)
    """

    def __init__(self, engine: Engine, breaker: CircuitBreaker | None = None) -> None:
        """Initialize the store.

        Args:
            engine: Engine connected to the sample database.
            breaker: Circuit breaker guarding writes. A default breaker is
                created if omitted.
        """
        self._engine = engine
        self._breaker = breaker or CircuitBreaker("sample_store")

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    def initialize(self) -> None:
        """Create the tables if they do not exist.

        Raises:
            StorageUnavailableError: If the database cannot be reached.
        """
        try:
            metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            raise StorageUnavailableError(f"Cannot initialize sample store: {e}") from e
        logger.info("Sample store ready at %s", self._engine.url.render_as_string())

    def reset(self) -> None:
        """Drop and recreate both tables, discarding all stored samples.

        Raises:
            StorageUnavailableError: If the database cannot be reached.
        """
        try:
            metadata.drop_all(self._engine)
            metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            raise StorageUnavailableError(f"Cannot reset sample store: {e}") from e
        logger.warning("Sample store tables were dropped and recreated")

    def update_sites(self, sites: Iterable[SiteConfig]) -> None:
        """Insert or update one ``monitor_sites`` row per site.

        A failure on one site is logged and the remaining sites are still
        written.
        """
        for site in sites:
            values = {
                "site_url": site.url,
                "search_token": site.expected_token,
                "max_response_time": round(site.max_load_time * 1000),
                "active": site.active,
            }
            try:
                with self._engine.begin() as conn:
                    existing = conn.execute(
                        select(sites_table.c.monitor_site_id).where(
                            sites_table.c.site_name == site.name
                        )
                    ).first()
                    if existing is None:
                        conn.execute(insert(sites_table).values(site_name=site.name, **values))
                    else:
                        conn.execute(
                            update(sites_table)
                            .where(sites_table.c.site_name == site.name)
                            .values(**values)
                        )
            except SQLAlchemyError as e:
                logger.warning("Could not update site row for %s: %s", site.name, e)

    def append(self, record: SampleRecord) -> bool:
        """Insert one sample row.

        Returns:
            True if the row was written, False if the write failed or was
            skipped because the circuit is open.
        """
        if not self._breaker.allow_request():
            logger.debug("Sample store circuit is open, skipping sample for %s", record.site_name)
            return False

        try:
            with self._engine.begin() as conn:
                conn.execute(
                    insert(samples_table).values(
                        site_name=record.site_name,
                        sample_type=SAMPLE_TYPE,
                        sample_time=record.sampled_at,
                        response_time=round(record.elapsed * 1000),
                        status_code=record.status_code,
                        error_code=record.outcome.error_code,
                        error_message=_truncate(record.message),
                    )
                )
        except SQLAlchemyError as e:
            self._breaker.record_failure(e)
            logger.warning(
                "Could not store sample for %s: %s",
                record.site_name,
                e,
                extra={"site": record.site_name},
            )
            return False

        self._breaker.record_success()
        return True

    def close(self) -> None:
        """Release pooled connections."""
        self._engine.dispose()


def create_sample_sink(
    database: DatabaseConfig,
    breaker_config: CircuitBreakerConfig | None = None,
) -> DatabaseSampleStore | NullSampleSink:
    """Create the sample sink for a database configuration.

    Returns a :class:`NullSampleSink` when no database is configured.

    Raises:
        ConfigurationError: If the database URL is invalid.
        StorageUnavailableError: If the configured database cannot be initialized.
    """
    if not database.configured:
        logger.warning("No database configured, samples will not be persisted")
        return NullSampleSink()

    try:
        engine = create_engine(database.sqlalchemy_url(), pool_pre_ping=True)
    except ImportError as e:
        raise StorageUnavailableError(
            f"Database driver for {database.driver} is not installed: {e}"
        ) from e
    breaker = CircuitBreaker("sample_store", breaker_config or CircuitBreakerConfig())
    store = DatabaseSampleStore(engine, breaker)
    store.initialize()
    return store


__all__ = [
    "DatabaseSampleStore",
    "MESSAGE_MAX_LENGTH",
    "NullSampleSink",
    "SampleSink",
    "StorageUnavailableError",
    "create_sample_sink",
    "metadata",
    "samples_table",
    "sites_table",
]
