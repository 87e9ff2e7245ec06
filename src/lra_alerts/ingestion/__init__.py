"""
Ingestion Package

Diff engine and the ingest run orchestrator.
"""
