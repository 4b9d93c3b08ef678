"""
BACKEND PACKAGE

Flask JSON API cho TOTP secret store.
Dùng: from backend import create_app; create_app().run()
"""

from .app import create_app

__all__ = ['create_app']
