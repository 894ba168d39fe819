"""Core application for StudioDesk.

This package contains the models, views, forms and services that power the
questionnaire workflow between designers and their clients: reusable
templates, their per-project instances, answer storage and template
synchronisation.
"""
