#!/usr/bin/env python
"""
Command line entry point for StudioDesk.

Points ``DJANGO_SETTINGS_MODULE`` at ``studiodesk.settings`` and hands the
arguments to Django.  Besides the built-in commands (``migrate``,
``runserver``) this exposes the questionnaire maintenance commands
``sync_questionnaire_template`` and ``purge_orphaned_answers``.
"""
import os
import sys


def main() -> None:
    """Run administrative tasks."""
    os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'studiodesk.settings')
    try:
        from django.core.management import execute_from_command_line  # type: ignore
    except ImportError as exc:  # pragma: no cover
        raise ImportError(
            "Couldn't import Django. Is it installed in the active environment?"
        ) from exc
    execute_from_command_line(sys.argv)


if __name__ == '__main__':
    main()
