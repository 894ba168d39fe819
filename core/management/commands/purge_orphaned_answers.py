"""Remove stored answers that no longer match any question.

Answers are keyed by stable question keys and are never deleted by template
synchronisation, so an answer to a question that was later removed from the
template stays stored.  This command garbage-collects those orphaned
entries on request.

Usage::

    python manage.py purge_orphaned_answers
    python manage.py purge_orphaned_answers --project 7 --dry-run
"""

from __future__ import annotations

from typing import Optional

from django.core.management.base import BaseCommand, CommandError

from core.models import Project, ProjectQuestionnaire
from core.services.questionnaire_answers import orphaned_answers
from core.services.questionnaires import purge_orphaned_answers


class Command(BaseCommand):
    help = "Delete questionnaire answers whose question no longer exists."

    def add_arguments(self, parser) -> None:
        parser.add_argument(
            '--project',
            type=int,
            help='Only purge instances belonging to the specified Project primary key',
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Report orphaned answers without deleting them',
        )

    def handle(self, *args, **options) -> None:
        project_id: Optional[int] = options.get('project')
        dry_run: bool = options.get('dry_run', False)

        instances = ProjectQuestionnaire.objects.select_related('project').order_by('project_id', 'position', 'pk')
        if project_id:
            if not Project.objects.filter(pk=project_id).exists():
                raise CommandError(f"No Project found with id {project_id}")
            instances = instances.filter(project_id=project_id)

        total = 0
        for instance in instances:
            if dry_run:
                removed = len(orphaned_answers(instance.get_questions(), instance.get_answers()))
            else:
                removed = purge_orphaned_answers(instance)
            if removed:
                self.stdout.write(
                    f"Instance {instance.pk} ({instance.title}) in project {instance.project_id}: "
                    f"{removed} orphaned answers"
                )
            total += removed
        verb = 'Found' if dry_run else 'Removed'
        self.stdout.write(self.style.SUCCESS(f'{verb} {total} orphaned answers.'))
