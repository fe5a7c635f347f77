"""Session and token lifecycle management for Flask services.

``from authsession import create_app`` builds an application with the
session manager registered under ``app.extensions["session_manager"]``.
"""

from __future__ import annotations

from .factory import create_app

__all__ = ["create_app"]
