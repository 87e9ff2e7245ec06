"""
Scrapers Package

ArcGIS client and authentication strategies for the LRA inventory layer.
"""

from .arcgis_client import ArcGISClient
from .auth import NoAuth, StaticTokenAuth, OAuthClientCredentialsAuth, build_auth_strategy

__all__ = [
    "ArcGISClient",
    "NoAuth",
    "StaticTokenAuth",
    "OAuthClientCredentialsAuth",
    "build_auth_strategy",
]
