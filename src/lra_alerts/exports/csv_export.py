"""
CSV Export

Renders the current inventory as CSV (raw passthrough columns, then
canonical columns) and publishes it to S3 with a time-limited download URL.
"""
from datetime import date
from typing import Any, Dict, Iterable, Optional

import boto3
import pandas as pd
from botocore.exceptions import BotoCoreError, ClientError

from config.settings import Settings, settings as default_settings
from src.lra_alerts.errors import ExportError
from src.lra_alerts.models.listing import CANONICAL_FIELDS, RAW_PASSTHROUGH_FIELDS, Listing
from src.lra_alerts.utils.logger import get_logger

logger = get_logger(__name__)

CSV_COLUMNS = list(RAW_PASSTHROUGH_FIELDS) + list(CANONICAL_FIELDS)
CSV_CONTENT_TYPE = "text/csv; charset=utf-8"


def listings_to_csv(listings: Iterable[Listing]) -> str:
    """
    One CSV row per listing.

    Args:
        listings: Listings to export

    Returns:
        CSV text with a header row
    """
    df = pd.DataFrame([listing.to_record() for listing in listings], columns=CSV_COLUMNS, dtype=object)
    return df.to_csv(index=False)


def export_key(prefix: str, day: date) -> str:
    """Object key for a given ingest date, e.g. exports/lra_available_2024-05-01.csv."""
    name = f"lra_available_{day:%Y-%m-%d}.csv"
    prefix = (prefix or "").strip("/")
    return f"{prefix}/{name}" if prefix else name


class S3ExportStore:
    """Uploads CSV exports to one S3 bucket."""

    def __init__(
        self,
        bucket: str,
        prefix: str = "exports",
        url_ttl_seconds: int = 60 * 60 * 24 * 7,
        region: Optional[str] = None,
        client=None,
    ):
        """
        Args:
            bucket: Target bucket
            prefix: Key prefix
            url_ttl_seconds: Lifetime of the presigned download URL
            region: AWS region for the default client
            client: boto3 S3 client override (for testing)
        """
        self.bucket = bucket
        self.prefix = prefix
        self.url_ttl_seconds = url_ttl_seconds
        self.client = client or boto3.client("s3", region_name=region)

    def upload_csv(self, body: str, day: Optional[date] = None) -> Dict[str, Any]:
        """
        Upload `body` and sign a download URL.

        Returns:
            {bucket, path, publicUrl}

        Raises:
            ExportError: Upload or signing failed
        """
        key = export_key(self.prefix, day or date.today())
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=body.encode("utf-8"),
                ContentType=CSV_CONTENT_TYPE,
                CacheControl="no-cache",
            )
            url = self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=self.url_ttl_seconds,
            )
        except (ClientError, BotoCoreError) as e:
            raise ExportError(f"Failed to publish s3://{self.bucket}/{key}: {e}") from e

        logger.info("csv_uploaded", bucket=self.bucket, path=key, bytes=len(body))
        return {"bucket": self.bucket, "path": key, "publicUrl": url}


def build_export_store(config: Optional[Settings] = None) -> Optional[S3ExportStore]:
    """S3ExportStore from settings, or None when no bucket is configured."""
    config = config or default_settings
    if not config.export_s3_bucket:
        return None
    return S3ExportStore(
        bucket=config.export_s3_bucket,
        prefix=config.export_s3_prefix,
        url_ttl_seconds=config.export_url_ttl_seconds,
        region=config.aws_region,
    )


class CsvExporter:
    """Best-effort export: failures are logged and reported as None."""

    def __init__(self, store: Optional[S3ExportStore] = None):
        self.store = store

    def export(self, listings: Iterable[Listing], day: Optional[date] = None) -> Optional[Dict[str, Any]]:
        """
        Render and publish the export.

        Returns:
            {bucket, path, publicUrl}, or None when skipped or failed
        """
        if self.store is None:
            logger.info("csv_export_skipped", reason="no_bucket_configured")
            return None

        listings = list(listings)
        try:
            return self.store.upload_csv(listings_to_csv(listings), day=day)
        except ExportError as e:
            logger.error("csv_export_failed", error=str(e), rows=len(listings))
            return None
