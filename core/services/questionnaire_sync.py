"""Propagate template edits into every project instance of the template.

``sync_template_to_projects`` visits the template owner's projects that hold
an instance of the template, in storage order, and rewrites each project's
instances inside its own transaction.  A failure on one project is logged
and recorded in the result without aborting the rest of the batch.

Modes:

``safe``
    Instances flagged ``is_customized`` are skipped and left untouched.

``force``
    Every instance is updated and its ``is_customized`` flag cleared.

Both modes keep project-only questions and options and never touch stored
answers.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from django.conf import settings
from django.contrib.auth.models import User
from django.db import transaction
from django.utils import timezone

from core.models import Project, ProjectQuestionnaire, QuestionnaireTemplate

from .questionnaire_merge import merge_for_sync
from .questionnaire_records import TemplateQuestion
from .questionnaires import QuestionnaireValidationError, ensure_designer, get_owned_template

logger = logging.getLogger(__name__)

SYNC_MODE_SAFE = 'safe'
SYNC_MODE_FORCE = 'force'
SYNC_MODES = (SYNC_MODE_SAFE, SYNC_MODE_FORCE)


class SyncConflict(Exception):
    """Raised internally when a single project cannot be synchronised."""


@dataclass
class ProjectSyncOutcome:
    changed: int = 0
    skipped_customized: int = 0


@dataclass
class SyncResult:
    """Aggregate result of synchronising one template."""

    template_id: int
    mode: str
    updated_projects: int = 0
    skipped_customized: int = 0
    failed_projects: List[int] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            'template_id': self.template_id,
            'mode': self.mode,
            'updated_projects': self.updated_projects,
            'skipped_customized': self.skipped_customized,
            'failed_projects': list(self.failed_projects),
        }


def normalise_mode(mode: Any) -> str:
    """Validate a requested sync mode, defaulting to the configured one."""

    if mode in (None, ''):
        mode = getattr(settings, 'QUESTIONNAIRE_SYNC_DEFAULT_MODE', SYNC_MODE_SAFE)
    text = str(mode).strip().lower()
    if text not in SYNC_MODES:
        raise QuestionnaireValidationError(f'Unknown sync mode "{mode}". Use "safe" or "force".')
    return text


def apply_template_to_instance(
    instance: ProjectQuestionnaire,
    template: QuestionnaireTemplate,
    template_questions: Tuple[TemplateQuestion, ...],
    mode: str,
) -> None:
    """Merge the template into ``instance`` in memory (no save)."""

    instance.title = template.title
    instance.description = template.description or ''
    instance.room_type = template.room_type or ''
    instance.set_questions(merge_for_sync(instance.get_questions(), template_questions))
    instance.synced_at = timezone.now()
    if mode == SYNC_MODE_FORCE:
        instance.is_customized = False


def sync_project(
    project: Project,
    template: QuestionnaireTemplate,
    template_questions: Tuple[TemplateQuestion, ...],
    mode: str,
) -> ProjectSyncOutcome:
    """Synchronise every instance of ``template`` inside one project.

    The project row is locked and all of its instances are written in one
    transaction so they succeed or fail together.
    """

    outcome = ProjectSyncOutcome()
    try:
        with transaction.atomic():
            Project.objects.select_for_update().filter(pk=project.pk).first()
            instances = project.questionnaires.filter(template=template).order_by('position', 'pk')
            for instance in instances:
                if mode == SYNC_MODE_SAFE and instance.is_customized:
                    outcome.skipped_customized += 1
                    continue
                apply_template_to_instance(instance, template, template_questions, mode)
                instance.save(
                    update_fields=[
                        'title',
                        'description',
                        'room_type',
                        'questions',
                        'synced_at',
                        'is_customized',
                    ]
                )
                outcome.changed += 1
    except Exception as exc:
        raise SyncConflict(f'Project {project.pk}: {exc}') from exc
    return outcome


def sync_template_to_projects(template: QuestionnaireTemplate, mode: Any = None) -> SyncResult:
    """Apply ``template`` to every project instance that references it.

    Projects are processed sequentially.  A project counts as updated when
    at least one of its instances changed.  Skipped customised instances are
    counted individually.
    """

    mode = normalise_mode(mode)
    template_questions = template.get_questions()
    result = SyncResult(template_id=template.pk, mode=mode)
    projects = (
        Project.objects.filter(designer=template.owner, questionnaires__template=template)
        .distinct()
        .order_by('pk')
    )
    for project in projects:
        try:
            outcome = sync_project(project, template, template_questions, mode)
        except SyncConflict:
            logger.exception('Failed to sync template %s into project %s', template.pk, project.pk)
            result.failed_projects.append(project.pk)
            continue
        result.skipped_customized += outcome.skipped_customized
        if outcome.changed:
            result.updated_projects += 1
    logger.info(
        'Template %s %s sync finished: %s projects updated, %s customised instances skipped, %s failed',
        template.pk,
        mode,
        result.updated_projects,
        result.skipped_customized,
        len(result.failed_projects),
    )
    return result


def sync_template(designer: User, template_id: Any, mode: Any = None) -> SyncResult:
    """Entry point for a designer-triggered sync of one of their templates."""

    ensure_designer(designer)
    mode = normalise_mode(mode)
    template = get_owned_template(designer, template_id)
    return sync_template_to_projects(template, mode)


__all__ = [
    'SYNC_MODES',
    'SYNC_MODE_FORCE',
    'SYNC_MODE_SAFE',
    'SyncConflict',
    'SyncResult',
    'apply_template_to_instance',
    'normalise_mode',
    'sync_project',
    'sync_template',
    'sync_template_to_projects',
]
