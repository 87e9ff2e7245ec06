"""
Airflow DAGs Package

DAGs:
- daily_listing_ingestion: LRA inventory ingest, diff and alerts (6:00 AM)
"""
