"""
Relay Proxy - rewriting HTTP reverse proxy
"""

from .app import create_app

__version__ = '1.0.0'

__all__ = ['create_app', '__version__']
