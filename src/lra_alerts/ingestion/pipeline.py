"""
LRA ingestion pipeline: fetch, normalize, diff, persist, then alert and
refresh selections.
"""
from __future__ import annotations

import argparse
import contextvars
import hmac
import json
import sys
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from config.settings import Settings, settings as default_settings
from src.lra_alerts.alerts.dispatcher import AlertDispatcher
from src.lra_alerts.alerts.notifications import build_notifier
from src.lra_alerts.db.repository import (
    DataIngestionRunRepository,
    ExportSnapshotRepository,
    ListingRepository,
)
from src.lra_alerts.db.session import Database
from src.lra_alerts.errors import IngestInProgressError, LraAlertsError, PersistenceError
from src.lra_alerts.etl.batch_writer import ListingBatchWriter
from src.lra_alerts.exports.csv_export import CsvExporter, build_export_store
from src.lra_alerts.ingestion.diff_engine import DiffResult, ListingDiffEngine, dedupe_listings
from src.lra_alerts.models.listing import Listing
from src.lra_alerts.scrapers.arcgis_client import ArcGISClient
from src.lra_alerts.services.selections import SelectionAggregator
from src.lra_alerts.utils.logger import bind_run_context, clear_run_context, get_logger, setup_logging

logger = get_logger(__name__)

SOURCE_TYPE = "lra_listings"


def _submit(executor: ThreadPoolExecutor, fn, *args) -> Future:
    # Each task gets its own copy so the bound run context reaches its logs
    return executor.submit(contextvars.copy_context().run, fn, *args)


class IngestionPipeline:
    """
    Runs one ingest at a time against the shared Database.

    Errors before the writer commits abort the run with nothing written. A
    writer failure leaves earlier batches committed; rerunning resumes
    correctly because unchanged listings are recognised by fingerprint.
    """

    def __init__(
        self,
        database: Database,
        client: ArcGISClient | None = None,
        diff_engine: ListingDiffEngine | None = None,
        writer: ListingBatchWriter | None = None,
        dispatcher: AlertDispatcher | None = None,
        aggregator: SelectionAggregator | None = None,
        exporter: CsvExporter | None = None,
        config: Settings | None = None,
    ):
        self.config = config or default_settings
        self.database = database
        self.client = client or ArcGISClient(self.config)
        self.diff_engine = diff_engine or ListingDiffEngine()
        self.writer = writer or ListingBatchWriter(database, max_operations=self.config.listing_batch_max_operations)
        self.dispatcher = dispatcher or AlertDispatcher(database, config=self.config)
        self.aggregator = aggregator or SelectionAggregator(database)
        self.exporter = exporter or CsvExporter()
        self.run_repository = DataIngestionRunRepository()
        self.snapshot_repository = ExportSnapshotRepository()
        self.listing_repository = ListingRepository()
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Run tracking
    # ------------------------------------------------------------------

    def _start_run(self) -> int:
        with self.database.session() as session:
            return self.run_repository.create_run(session, SOURCE_TYPE).id

    def _complete_run(self, run_id: int, status: str, **kwargs) -> None:
        try:
            with self.database.session() as session:
                self.run_repository.complete_run(session, run_id, status, **kwargs)
        except SQLAlchemyError as e:
            logger.error("ingestion_run_update_failed", status=status, error=str(e))

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _fetch(self) -> List[Listing]:
        listings = dedupe_listings(self.client.fetch_listings())
        logger.info("listings_fetched", count=len(listings))
        return listings

    def _diff(self, listings: List[Listing]) -> DiffResult:
        with self.database.session() as session:
            return self.diff_engine.compute(session, listings)

    def _post_commit(self, diff: DiffResult) -> None:
        """Alert dispatch and selection refresh, concurrently. Neither can fail the run."""
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="post-commit") as executor:
            dispatch = _submit(executor, self.dispatcher.dispatch, diff)
            selections = _submit(executor, self.aggregator.refresh)

        try:
            dispatch.result()
        except Exception as e:
            logger.error("alert_dispatch_failed", error=str(e), error_type=type(e).__name__)
        try:
            selections.result()
        except Exception as e:
            logger.error("selection_refresh_failed", error=str(e), error_type=type(e).__name__)

    def _save_summary(self, counts: Dict[str, int], csv: Optional[Dict[str, Any]]) -> None:
        try:
            with self.database.session() as session:
                self.snapshot_repository.save_run_summary(session, counts, csv)
        except SQLAlchemyError as e:
            logger.error("run_summary_save_failed", error=str(e))

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run_ingest(self) -> Dict[str, Any]:
        """
        Run one full ingest.

        Returns:
            {added, changed, removed, unchanged, total, csv}

        Raises:
            IngestInProgressError: Another run is in progress
            SourceError: Fetch failed (nothing written)
            PersistenceError: A listing batch failed to commit
        """
        if not self._lock.acquire(blocking=False):
            logger.warning("ingest_already_running")
            raise IngestInProgressError("An ingest run is already in progress")

        try:
            run_id = self._start_run()
            bind_run_context(run_id=run_id)
            return self._run(run_id)
        finally:
            clear_run_context()
            self._lock.release()

    def _run(self, run_id: int) -> Dict[str, Any]:
        logger.info("ingest_started", where=self.client.build_where())
        diff: DiffResult | None = None
        try:
            listings = self._fetch()
            diff = self._diff(listings)
            self.writer.write(diff)
        except PersistenceError as e:
            self._complete_run(
                run_id,
                "partial" if e.is_partial else "failure",
                counts=diff.counts() if diff else None,
                batches_committed=e.batches_committed,
                error_message=str(e),
                error_details=e.to_dict(),
            )
            logger.error("ingest_persistence_failed", **e.to_dict())
            raise
        except Exception as e:
            self._complete_run(
                run_id,
                "failure",
                error_message=str(e),
                error_details={"error_type": type(e).__name__},
            )
            logger.error("ingest_failed", error=str(e), error_type=type(e).__name__)
            raise

        self._post_commit(diff)

        counts = diff.counts()
        csv = self.exporter.export(listings)
        self._save_summary(counts, csv)
        self._complete_run(run_id, "success", counts=counts, batches_committed=len(self.writer.commits))

        logger.info("ingest_completed", csv_exported=csv is not None, **counts)
        return {**counts, "csv": csv}

    def wipe_listings(self) -> Dict[str, int]:
        """
        Delete every stored listing (maintenance).

        Raises:
            IngestInProgressError: An ingest run is in progress
        """
        if not self._lock.acquire(blocking=False):
            raise IngestInProgressError("Cannot wipe listings while an ingest run is in progress")
        try:
            deleted = self.listing_repository.wipe(self.database, self.config.listing_batch_max_operations)
        finally:
            self._lock.release()

        logger.warning("listings_wiped", deleted=deleted)
        return {"deleted": deleted}


def build_pipeline(config: Settings | None = None, database: Database | None = None) -> IngestionPipeline:
    """Wire a production pipeline from settings."""
    config = config or default_settings
    database = database or Database(config.database_url, config)
    return IngestionPipeline(
        database,
        client=ArcGISClient(config),
        dispatcher=AlertDispatcher(database, notifier=build_notifier(config), config=config),
        exporter=CsvExporter(build_export_store(config)),
        config=config,
    )


_default_pipeline: IngestionPipeline | None = None
_default_pipeline_lock = threading.Lock()


def get_pipeline() -> IngestionPipeline:
    """Process-wide pipeline shared by every trigger, so the ingest mutex is shared too."""
    global _default_pipeline
    with _default_pipeline_lock:
        if _default_pipeline is None:
            _default_pipeline = build_pipeline()
        return _default_pipeline


def trigger_ingest(
    secret: Optional[str],
    pipeline: IngestionPipeline | None = None,
    config: Settings | None = None,
) -> Dict[str, Any]:
    """
    Authenticated trigger surface.

    Args:
        secret: Shared secret presented by the caller
        pipeline: Pipeline override (defaults to the process-wide pipeline)
        config: Settings override

    Returns:
        {ok: True, added, changed, removed, unchanged, total, csv} or
        {ok: False, error}
    """
    config = config or default_settings
    expected = config.ingest_secret
    if not expected or not secret or not hmac.compare_digest(str(secret), expected):
        logger.warning("ingest_trigger_unauthorized")
        return {"ok": False, "error": "unauthorized"}

    pipeline = pipeline or get_pipeline()
    try:
        summary = pipeline.run_ingest()
    except (LraAlertsError, SQLAlchemyError) as e:
        return {"ok": False, "error": str(e)}
    except Exception as e:
        logger.error("ingest_trigger_failed", error=str(e), error_type=type(e).__name__)
        return {"ok": False, "error": str(e)}
    return {"ok": True, **summary}


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="LRA listing ingestion")
    parser.add_argument("--wipe", action="store_true", help="Delete every stored listing instead of ingesting")
    parser.add_argument("--init-db", action="store_true", help="Create tables before running (development only)")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging()
    pipeline = build_pipeline()
    if not pipeline.database.health_check():
        return 1
    if args.init_db:
        pipeline.database.create_all_tables()

    try:
        result = pipeline.wipe_listings() if args.wipe else pipeline.run_ingest()
    except (LraAlertsError, SQLAlchemyError) as e:
        logger.error("ingest_command_failed", error=str(e), error_type=type(e).__name__)
        return 1

    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
