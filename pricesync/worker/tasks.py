"""Sync entry points: full extract sync and forced aggregate recompute."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from pricesync import metrics
from pricesync.config import settings
from pricesync.ingest.extract_parser import ExtractParser
from pricesync.logging_config import log_context
from pricesync.remote.client import RemoteStoreClient
from pricesync.sync.aggregate import recompute_aggregates
from pricesync.sync.models import AggregationResult, SyncResult
from pricesync.sync.reconcile import reconcile

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncInProgressError(RuntimeError):
    """Raised when a run is requested while another one is active."""
    pass


class EmptyExtractError(ValueError):
    """Raised when an extract yields no usable rows.

    Decay would zero every quote in the store, so such a run never starts.
    """
    pass


class SyncRunError(RuntimeError):
    """Raised when a run fails at a phase boundary."""

    def __init__(self, message: str, timestamp: Optional[datetime] = None):
        super().__init__(message)
        self.message = message
        self.timestamp = timestamp or _utcnow()

    def to_dict(self) -> dict:
        return {"error": self.message, "timestamp": self.timestamp.isoformat()}


@dataclass
class SyncReport:
    """What a run returns to the transport layer."""

    trigger: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    extract: Optional[dict] = None
    sync: Optional[SyncResult] = None
    aggregation: Optional[AggregationResult] = None
    markup: Optional[float] = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "trigger": self.trigger,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "markup": self.markup,
            "extract": self.extract,
            "sync": self.sync.to_dict() if self.sync else None,
            "aggregation": self.aggregation.to_dict() if self.aggregation else None,
            "warnings": self.warnings,
        }


class SyncTaskRunner:
    """
    Runs syncs against the remote store, one at a time.

    The store assumes a single writer, so both entry points share a lock
    and a second request is rejected rather than queued.
    """

    def __init__(self, client: RemoteStoreClient, **batch_options):
        self.client = client
        self.batch_options = batch_options
        self._lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def run_sync(self, text: str, markup: Optional[float] = None) -> SyncReport:
        """
        Parse an extract, reconcile it, then recompute aggregates.

        Raises:
            EmptyExtractError: If the extract has no usable rows
            SyncInProgressError: If another run is active
            SyncRunError: If the run fails at a phase boundary
        """
        markup = markup if markup is not None else settings.default_markup
        report = SyncReport(trigger="extract", started_at=_utcnow(), markup=markup)

        extract = ExtractParser().parse(text)
        report.extract = extract.summary()
        if not extract.line_items:
            raise EmptyExtractError("extract contains no usable rows")
        if extract.dropped_rows:
            report.warnings.append(f"{extract.dropped_rows} rows dropped: no code or model")

        async with self._exclusive("extract"):
            with log_context(trigger="extract"):
                start = time.monotonic()
                try:
                    report.sync = await reconcile(
                        self.client, extract.line_items, markup=markup, **self.batch_options
                    )
                    report.aggregation = await recompute_aggregates(self.client, **self.batch_options)
                except Exception as e:
                    metrics.sync_runs_total.labels(trigger="extract", status="failed").inc()
                    logger.exception("Sync run failed")
                    raise SyncRunError(f"sync failed: {e}") from e
                finally:
                    metrics.sync_duration_seconds.labels(trigger="extract").observe(
                        time.monotonic() - start
                    )

        report.finished_at = _utcnow()
        status = "partial" if report.sync.errors or report.aggregation.errors else "success"
        metrics.sync_runs_total.labels(trigger="extract", status=status).inc()
        return report

    async def run_aggregation(self) -> SyncReport:
        """Recompute aggregates without ingesting an extract."""
        report = SyncReport(trigger="aggregate", started_at=_utcnow())

        async with self._exclusive("aggregate"):
            with log_context(trigger="aggregate"):
                start = time.monotonic()
                try:
                    report.aggregation = await recompute_aggregates(self.client, **self.batch_options)
                except Exception as e:
                    metrics.sync_runs_total.labels(trigger="aggregate", status="failed").inc()
                    logger.exception("Aggregation run failed")
                    raise SyncRunError(f"aggregation failed: {e}") from e
                finally:
                    metrics.sync_duration_seconds.labels(trigger="aggregate").observe(
                        time.monotonic() - start
                    )

        report.finished_at = _utcnow()
        status = "partial" if report.aggregation.errors else "success"
        metrics.sync_runs_total.labels(trigger="aggregate", status=status).inc()
        return report

    def _exclusive(self, trigger: str) -> asyncio.Lock:
        if self._lock.locked():
            logger.warning(f"Rejecting {trigger} run: another run is active")
            raise SyncInProgressError("a sync run is already in progress")
        return self._lock
