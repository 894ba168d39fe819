"""Push a questionnaire template into every project that uses it.

This management command runs the same synchronisation as the designer's
"sync projects" action.  It is useful after bulk template edits made
through the admin or a data migration.

Usage::

    python manage.py sync_questionnaire_template --template 12
    python manage.py sync_questionnaire_template --template 12 --mode force

``safe`` mode (the default) skips instances that were customised inside a
project; ``force`` updates them too and clears their customised flag.
Project-only questions, options and stored answers are kept in both modes.
"""

from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from core.models import QuestionnaireTemplate
from core.services.questionnaire_sync import SYNC_MODES, sync_template_to_projects


class Command(BaseCommand):
    help = "Synchronise a questionnaire template into the projects that use it."

    def add_arguments(self, parser) -> None:
        parser.add_argument(
            '--template',
            type=int,
            required=True,
            help='Primary key of the QuestionnaireTemplate to synchronise',
        )
        parser.add_argument(
            '--mode',
            choices=SYNC_MODES,
            default=None,
            help='safe skips customised instances, force resets them',
        )

    def handle(self, *args, **options) -> None:
        template_id: int = options['template']
        try:
            template = QuestionnaireTemplate.objects.get(pk=template_id)
        except QuestionnaireTemplate.DoesNotExist:
            raise CommandError(f"No QuestionnaireTemplate found with id {template_id}")

        self.stdout.write(f"Synchronising template {template.pk}: {template.title}...")
        result = sync_template_to_projects(template, options.get('mode'))
        self.stdout.write(
            f"Mode {result.mode}: updated {result.updated_projects} projects, "
            f"skipped {result.skipped_customized} customised instances."
        )
        for project_id in result.failed_projects:
            self.stderr.write(f"Error synchronising project {project_id}; see logs for details.")
        self.stdout.write(self.style.SUCCESS('Template synchronisation complete.'))
