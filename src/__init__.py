"""
LRA Alerts - Core Package

Ingestion, diffing and change alerts for St. Louis Land Reutilization
Authority property inventory.
"""

__version__ = "0.1.0"
