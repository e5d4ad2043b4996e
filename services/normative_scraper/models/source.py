"""
Scraper Source Model
====================

A configured external origin of normative documents.

Version: 0.1.0
"""

import uuid
from datetime import UTC, datetime, time, timedelta
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy import Enum as SQLEnum

from shared.database.postgres import Base


class SourceType(str, Enum):
    """Handler selector for a source."""

    # Official gazettes and CONSAR portals
    DOF = "dof"
    SIDOF = "sidof"
    GOB_MX_CONSAR = "gob_mx_consar"
    SINOR_CONSAR = "sinor_consar"
    RSS_FEED = "rss_feed"

    # Financial regulators
    CNBV = "cnbv"
    SHCP = "shcp"
    BANXICO = "banxico"
    SAT = "sat"
    RENAPO = "renapo"
    IMSS = "imss"
    INFONAVIT = "infonavit"
    INEGI = "inegi"
    SEPOMEX = "sepomex"
    SPEI = "spei"

    # Sanctions lists
    OFAC = "ofac"
    UIF = "uif"
    ONU = "onu"

    # Technical and operational SAR sources
    CONSAR_PORTAL = "consar_portal"
    CONSAR_SISET = "consar_siset"
    PROCESAR = "procesar"
    AMAFORE = "amafore"
    CONDUSEF = "condusef"
    INDICES_FINANCIEROS = "indices_financieros"
    SAR_LAYOUTS = "sar_layouts"

    # Markets and investments
    BMV = "bmv"
    CNSF = "cnsf"
    PENSIONISSSTE = "pensionissste"
    IPAB = "ipab"
    SIEFORE_PRECIOS = "siefore_precios"

    # Labour and financial infrastructure
    STPS = "stps"
    FOVISSSTE = "fovissste"
    INDEVAL = "indeval"
    MEXDER = "mexder"
    TABLAS_ACTUARIALES = "tablas_actuariales"

    # Complementary regulators
    COFECE = "cofece"
    PRODECON = "prodecon"
    INAI = "inai"
    PROFECO = "profeco"
    LEY_SAR = "ley_sar"
    CONASAMI = "conasami"
    ASF = "asf"
    CETES = "cetes"
    VALMER = "valmer"
    SHF = "shf"

    # SAR operations
    SUA = "sua"
    IDSE = "idse"
    EXPEDIENTE_AFORE = "expediente_afore"
    LISIT = "lisit"
    PENSION_BIENESTAR = "pension_bienestar"

    CUSTOM = "custom"


class ScraperFrequency(str, Enum):
    """How often a source is due for harvesting."""

    HOURLY = "hourly"
    EVERY_6_HOURS = "every_6_hours"
    EVERY_12_HOURS = "every_12_hours"
    DAILY = "daily"
    WEEKLY = "weekly"
    MANUAL = "manual"


SCHEDULE_HOUR_UTC = 8


def next_execution(frequency: ScraperFrequency, now: datetime | None = None) -> datetime | None:
    """
    Compute the next due time for a frequency.

    Daily sources run at 08:00 UTC the next day, weekly sources on the next
    Monday at 08:00 UTC. Manual sources are never scheduled.
    """
    now = now or datetime.now(UTC)
    run_at = time(SCHEDULE_HOUR_UTC, tzinfo=UTC)

    if frequency == ScraperFrequency.HOURLY:
        return now + timedelta(hours=1)
    if frequency == ScraperFrequency.EVERY_6_HOURS:
        return now + timedelta(hours=6)
    if frequency == ScraperFrequency.EVERY_12_HOURS:
        return now + timedelta(hours=12)
    if frequency == ScraperFrequency.DAILY:
        return datetime.combine(now.date() + timedelta(days=1), run_at)
    if frequency == ScraperFrequency.WEEKLY:
        days_ahead = 7 - now.weekday()
        return datetime.combine(now.date() + timedelta(days=days_ahead), run_at)
    return None


class ScraperSourceModel(Base):
    """
    SQLAlchemy model for scraper sources.

    Externally configured, except for the run bookkeeping that the
    orchestrator updates on every execution.
    """

    __tablename__ = "scraper_sources"
    __table_args__ = (
        Index("ix_scraper_sources_due", "is_enabled", "is_deleted", "next_scheduled_at"),
        Index("ix_scraper_sources_type", "source_type"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    source_type = Column(SQLEnum(SourceType), nullable=False)
    base_url = Column(String(500), nullable=False)
    endpoint_path = Column(String(500))
    frequency = Column(SQLEnum(ScraperFrequency), nullable=False, default=ScraperFrequency.DAILY)
    configuration = Column(JSON)  # selectors, feed options, hardcoded records

    # Scheduling
    is_enabled = Column(Boolean, nullable=False, default=True)
    next_scheduled_at = Column(DateTime(timezone=True))

    # Run bookkeeping
    last_execution_at = Column(DateTime(timezone=True))
    consecutive_failures = Column(Integer, nullable=False, default=0)
    total_executions = Column(Integer, nullable=False, default=0)
    total_documents_found = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)

    # Soft delete and audit
    is_deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    @classmethod
    def create(
        cls,
        name: str,
        source_type: SourceType,
        base_url: str,
        frequency: ScraperFrequency = ScraperFrequency.DAILY,
        description: str = "",
        endpoint_path: str | None = None,
        configuration: dict[str, Any] | None = None,
    ) -> "ScraperSourceModel":
        """Create an enabled source scheduled according to its frequency."""
        if not name or not name.strip():
            raise ValueError("Name is required")
        if not base_url or not base_url.strip():
            raise ValueError("Base URL is required")

        now = datetime.now(UTC)
        return cls(
            id=uuid.uuid4(),
            name=name.strip(),
            description=description,
            source_type=source_type,
            base_url=base_url.rstrip("/"),
            endpoint_path=endpoint_path.lstrip("/") if endpoint_path else None,
            frequency=frequency,
            configuration=configuration,
            is_enabled=True,
            next_scheduled_at=next_execution(frequency, now),
            consecutive_failures=0,
            total_executions=0,
            total_documents_found=0,
            is_deleted=False,
            created_at=now,
            updated_at=now,
        )

    @property
    def full_url(self) -> str:
        if not self.endpoint_path:
            return self.base_url
        return f"{self.base_url}/{self.endpoint_path}"

    def _touch(self) -> datetime:
        now = datetime.now(UTC)
        self.updated_at = now
        return now

    def enable(self) -> None:
        now = self._touch()
        self.is_enabled = True
        self.next_scheduled_at = next_execution(self.frequency, now)

    def disable(self) -> None:
        self._touch()
        self.is_enabled = False
        self.next_scheduled_at = None

    def soft_delete(self) -> None:
        self.disable()
        self.is_deleted = True

    def set_endpoint(self, endpoint_path: str | None) -> None:
        self._touch()
        self.endpoint_path = endpoint_path.lstrip("/") if endpoint_path else None

    def set_configuration(self, configuration: dict[str, Any] | None) -> None:
        self._touch()
        self.configuration = configuration

    def update_frequency(self, frequency: ScraperFrequency) -> None:
        """Change the frequency; enabled sources are rescheduled from now."""
        now = self._touch()
        self.frequency = frequency
        if self.is_enabled:
            self.next_scheduled_at = next_execution(frequency, now)

    def record_execution_start(self) -> None:
        now = self._touch()
        self.last_execution_at = now
        self.total_executions = (self.total_executions or 0) + 1

    def record_execution_success(self, documents_new: int) -> None:
        now = self._touch()
        self.consecutive_failures = 0
        self.total_documents_found = (self.total_documents_found or 0) + documents_new
        self.last_error = None
        self.next_scheduled_at = next_execution(self.frequency, now)

    def record_execution_failure(
        self,
        error: str,
        max_consecutive_failures: int = 5,
        backoff_minutes: int = 15,
    ) -> None:
        """
        Register a failed run.

        Retries back off exponentially (30, 60, 120, 240 minutes with the
        defaults); the source is disabled once the failure limit is reached.
        """
        now = self._touch()
        self.consecutive_failures = (self.consecutive_failures or 0) + 1
        self.last_error = error

        if self.consecutive_failures >= max_consecutive_failures:
            self.is_enabled = False
            self.next_scheduled_at = None
        else:
            delay = (2 ** self.consecutive_failures) * backoff_minutes
            self.next_scheduled_at = now + timedelta(minutes=delay)

    def reset_failures(self) -> None:
        now = self._touch()
        self.consecutive_failures = 0
        self.last_error = None
        self.is_enabled = True
        self.next_scheduled_at = next_execution(self.frequency, now)

    def is_due(self, now: datetime) -> bool:
        return (
            bool(self.is_enabled)
            and not self.is_deleted
            and self.next_scheduled_at is not None
            and self.next_scheduled_at <= now
        )
