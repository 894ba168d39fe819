"""Application configuration for the core app.

This module defines a custom ``AppConfig`` for the ``core`` app.  The
configuration is intentionally lightweight so Django can start without
performing database access during ``ready()`` execution.  Template
synchronisation and answer clean-up run from views or management commands.
"""

from __future__ import annotations

from django.apps import AppConfig


class CoreConfig(AppConfig):
    """Custom AppConfig for the core application."""

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'core'
    verbose_name = 'StudioDesk questionnaires'
