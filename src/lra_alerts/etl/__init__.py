"""
ETL Package

Load operations that move diffed listings into the database.
"""
from src.lra_alerts.etl.batch_writer import ListingBatchWriter, build_listing_document

__all__ = [
    "ListingBatchWriter",
    "build_listing_document",
]
