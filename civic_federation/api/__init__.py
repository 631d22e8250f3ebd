"""
Civic Federation - HTTP API
"""

from civic_federation.api.app import create_app

__all__ = ["create_app"]
