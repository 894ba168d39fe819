"""Questionnaire actions performed by designers and clients.

This module holds the database-facing side of the questionnaire workflow:
template CRUD for the owning designer, assigning a template to a project
(materialising a new instance or re-merging an existing one), direct
project-only edits, answer submission and instance removal.  The caller's
identity is always passed in explicitly; ownership failures surface as
``QuestionnaireNotFound`` so callers cannot probe for foreign objects.

Bulk propagation of template edits lives in ``questionnaire_sync``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from django.contrib.auth.models import User
from django.db import transaction
from django.db.models import Max, QuerySet
from django.utils import timezone

from core.models import Profile, Project, ProjectQuestionnaire, QuestionnaireTemplate

from .questionnaire_answers import (
    SaveAnswersResult,
    build_answers,
    orphaned_answers,
    purge_orphans,
    resolve_answers,
)
from .questionnaire_merge import materialize_questions, merge_for_assign
from .questionnaire_records import (
    InstanceOption,
    InstanceQuestion,
    TemplatePayloadError,
    coerce_bool,
    new_local_id,
    parse_template_questions,
    template_ids,
)

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_TITLE = 'Untitled questionnaire'


class QuestionnaireError(Exception):
    """Base class for questionnaire workflow failures."""


class QuestionnaireNotFound(QuestionnaireError):
    """Raised when a template, project or instance is missing or not owned by the caller."""


class QuestionnaireValidationError(QuestionnaireError):
    """Raised when a submitted payload cannot be accepted."""


class QuestionnaireAccessDenied(QuestionnaireError):
    """Raised when the caller's role does not allow the action."""


def user_role(user: User) -> str:
    """Return the workflow role recorded on the user's profile."""

    try:
        return user.profile.role
    except Profile.DoesNotExist:
        return Profile.Role.CLIENT


def ensure_designer(user: User) -> None:
    if user_role(user) != Profile.Role.DESIGNER:
        raise QuestionnaireAccessDenied('Designer role required.')


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def get_owned_template(owner: User, template_id: Any) -> QuestionnaireTemplate:
    try:
        return QuestionnaireTemplate.objects.get(pk=template_id, owner=owner)
    except (QuestionnaireTemplate.DoesNotExist, ValueError, TypeError):
        raise QuestionnaireNotFound('Template not found.')


def accessible_projects(user: User) -> QuerySet:
    """Projects the user may read: designed by them or linked as a client."""

    if user_role(user) == Profile.Role.DESIGNER:
        return Project.objects.filter(designer=user)
    return Project.objects.filter(clients=user)


def get_project_for_user(user: User, project_id: Any, *, for_update: bool = False) -> Project:
    qs = accessible_projects(user)
    if for_update:
        qs = qs.select_for_update(of=('self',))
    try:
        return qs.get(pk=project_id)
    except (Project.DoesNotExist, ValueError, TypeError):
        raise QuestionnaireNotFound('Project not found.')


def get_designed_project(designer: User, project_id: Any, *, for_update: bool = False) -> Project:
    ensure_designer(designer)
    qs = Project.objects.filter(designer=designer)
    if for_update:
        qs = qs.select_for_update(of=('self',))
    try:
        return qs.get(pk=project_id)
    except (Project.DoesNotExist, ValueError, TypeError):
        raise QuestionnaireNotFound('Project not found.')


def find_instance(project: Project, instance_key: Any) -> ProjectQuestionnaire:
    """Locate an instance by its own id, falling back to its template id.

    The instance id always wins: a key that is the id of one instance never
    resolves to a different instance whose template shares that number.
    The template-id fallback exists for callers that only know which
    template they answered.
    """

    instances = project.questionnaires.all()
    key = str(instance_key).strip() if instance_key is not None else ''
    if not key.isdigit():
        raise QuestionnaireNotFound('Questionnaire instance not found.')
    instance = instances.filter(pk=int(key)).first()
    if instance is None:
        instance = instances.filter(template_id=int(key)).first()
    if instance is None:
        raise QuestionnaireNotFound('Questionnaire instance not found.')
    return instance


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


def list_templates(owner: User) -> QuerySet:
    ensure_designer(owner)
    return QuestionnaireTemplate.objects.filter(owner=owner)


def _text_field(payload: Mapping[str, Any], name: str) -> str:
    value = payload.get(name)
    return str(value).strip() if value is not None else ''


def create_template(owner: User, payload: Mapping[str, Any]) -> QuestionnaireTemplate:
    """Create a template; every question and option gets a fresh id."""

    ensure_designer(owner)
    try:
        questions = parse_template_questions(payload.get('questions') or [])
    except TemplatePayloadError as exc:
        raise QuestionnaireValidationError(str(exc)) from exc
    template = QuestionnaireTemplate(
        owner=owner,
        title=_text_field(payload, 'title') or DEFAULT_TEMPLATE_TITLE,
        description=_text_field(payload, 'description'),
        room_type=_text_field(payload, 'room_type'),
    )
    template.set_questions(questions)
    template.save()
    logger.info('Designer %s created questionnaire template %s', owner.pk, template.pk)
    return template


def update_template(owner: User, template_id: Any, payload: Mapping[str, Any]) -> QuestionnaireTemplate:
    """Apply a partial update to a template owned by ``owner``.

    Questions and options that carry an id already present in the template
    keep it; everything else is treated as new content.
    """

    ensure_designer(owner)
    template = get_owned_template(owner, template_id)
    update_fields: List[str] = ['updated_at']
    if 'title' in payload:
        template.title = _text_field(payload, 'title') or template.title
        update_fields.append('title')
    for name in ('description', 'room_type'):
        if name in payload:
            setattr(template, name, _text_field(payload, name))
            update_fields.append(name)
    if payload.get('questions') is not None:
        question_ids, option_ids = template_ids(template.get_questions())
        try:
            questions = parse_template_questions(
                payload['questions'],
                known_question_ids=question_ids,
                known_option_ids=option_ids,
            )
        except TemplatePayloadError as exc:
            raise QuestionnaireValidationError(str(exc)) from exc
        template.set_questions(questions)
        update_fields.append('questions')
    template.save(update_fields=update_fields)
    return template


def delete_template(owner: User, template_id: Any) -> None:
    ensure_designer(owner)
    template = get_owned_template(owner, template_id)
    template.delete()
    logger.info('Designer %s deleted questionnaire template %s', owner.pk, template_id)


# ---------------------------------------------------------------------------
# Instances
# ---------------------------------------------------------------------------


def _copy_template_metadata(instance: ProjectQuestionnaire, template: QuestionnaireTemplate) -> None:
    instance.title = template.title
    instance.description = template.description or ''
    instance.room_type = template.room_type or ''


def materialize(project: Project, template: QuestionnaireTemplate, position: int = 0) -> ProjectQuestionnaire:
    """Build (unsaved) a fresh instance of ``template`` for ``project``."""

    instance = ProjectQuestionnaire(
        project=project,
        template=template,
        answers=[],
        is_customized=False,
        synced_at=timezone.now(),
        position=position,
    )
    _copy_template_metadata(instance, template)
    instance.set_questions(materialize_questions(template.get_questions()))
    return instance


@dataclass
class AssignResult:
    instance: ProjectQuestionnaire
    created: bool


@transaction.atomic
def assign_or_update_template(designer: User, project_id: Any, template_id: Any) -> AssignResult:
    """Assign a template to a project or re-merge the existing instance.

    Re-assignment makes the instance match the template again while
    keeping local ids, extra fields and all stored answers.
    """

    project = get_designed_project(designer, project_id, for_update=True)
    template = get_owned_template(designer, template_id)
    instance = project.questionnaires.filter(template=template).first()
    if instance is None:
        next_position = (project.questionnaires.aggregate(Max('position'))['position__max'] or 0) + 1
        instance = materialize(project, template, position=next_position)
        instance.save()
        logger.info('Assigned template %s to project %s as instance %s', template.pk, project.pk, instance.pk)
        return AssignResult(instance=instance, created=True)

    _copy_template_metadata(instance, template)
    instance.set_questions(merge_for_assign(instance.get_questions(), template.get_questions()))
    instance.synced_at = timezone.now()
    instance.save(update_fields=['title', 'description', 'room_type', 'questions', 'synced_at'])
    logger.info('Re-merged template %s into instance %s of project %s', template.pk, instance.pk, project.pk)
    return AssignResult(instance=instance, created=False)


@transaction.atomic
def clear_project_questionnaires(designer: User, project_id: Any) -> int:
    """Remove every questionnaire instance from a project."""

    project = get_designed_project(designer, project_id, for_update=True)
    deleted, _ = project.questionnaires.all().delete()
    return deleted


@transaction.atomic
def remove_instance(designer: User, project_id: Any, instance_key: Any) -> None:
    project = get_designed_project(designer, project_id, for_update=True)
    instance = find_instance(project, instance_key)
    instance.delete()
    logger.info('Removed questionnaire instance %s from project %s', instance_key, project.pk)


def _edited_options(raw_options: Any, current: Optional[InstanceQuestion]) -> Tuple[InstanceOption, ...]:
    existing = {option.id: option for option in current.options} if current else {}
    options: List[InstanceOption] = []
    claimed = set()
    for raw in raw_options if isinstance(raw_options, (list, tuple)) else []:
        if not isinstance(raw, Mapping):
            raise QuestionnaireValidationError('Options must be objects.')
        text = str(raw.get('text') or '').strip()
        if not text:
            raise QuestionnaireValidationError('Every option requires text.')
        known = existing.get(str(raw.get('id') or ''))
        if known is not None and known.id not in claimed:
            claimed.add(known.id)
            options.append(
                InstanceOption(
                    id=known.id,
                    text=text,
                    image_url=str(raw.get('image_url') or '').strip(),
                    source_option_id=known.source_option_id,
                    extra=known.extra,
                )
            )
        else:
            options.append(
                InstanceOption(id=new_local_id(), text=text, image_url=str(raw.get('image_url') or '').strip())
            )
    return tuple(options)


def parse_edited_questions(payload: Any, current: Tuple[InstanceQuestion, ...]) -> Tuple[InstanceQuestion, ...]:
    """Turn a designer's edited question list into instance records.

    Source ids are never taken from the payload: an item keeps its source
    id only when it carries the local id of an existing instance item.
    Everything else becomes project-only content.
    """

    if not isinstance(payload, (list, tuple)):
        raise QuestionnaireValidationError('Questions must be provided as a list.')
    existing = {question.id: question for question in current}
    claimed = set()
    questions: List[InstanceQuestion] = []
    for raw in payload:
        if not isinstance(raw, Mapping):
            raise QuestionnaireValidationError('Questions must be objects.')
        text = str(raw.get('text') or '').strip()
        if not text:
            raise QuestionnaireValidationError('Every question requires text.')
        known = existing.get(str(raw.get('id') or ''))
        if known is not None and known.id in claimed:
            known = None
        multiple = raw.get('multiple', known.multiple if known else True)
        if known is not None:
            claimed.add(known.id)
            questions.append(
                InstanceQuestion(
                    id=known.id,
                    text=text,
                    multiple=coerce_bool(multiple),
                    options=_edited_options(raw.get('options'), known),
                    source_question_id=known.source_question_id,
                    extra=known.extra,
                )
            )
        else:
            questions.append(
                InstanceQuestion(
                    id=new_local_id(),
                    text=text,
                    multiple=coerce_bool(multiple),
                    options=_edited_options(raw.get('options'), None),
                )
            )
    return tuple(questions)


@transaction.atomic
def edit_instance(
    designer: User,
    project_id: Any,
    instance_id: Any,
    payload: Mapping[str, Any],
) -> ProjectQuestionnaire:
    """Apply a designer's project-only edit and mark the instance customised."""

    project = get_designed_project(designer, project_id, for_update=True)
    try:
        instance = project.questionnaires.get(pk=instance_id)
    except (ProjectQuestionnaire.DoesNotExist, ValueError, TypeError):
        raise QuestionnaireNotFound('Questionnaire instance not found.')
    for name in ('title', 'description', 'room_type'):
        if name in payload and payload[name] is not None:
            setattr(instance, name, str(payload[name]).strip())
    if payload.get('questions') is not None:
        instance.set_questions(parse_edited_questions(payload['questions'], instance.get_questions()))
    instance.is_customized = True
    instance.save()
    return instance


@transaction.atomic
def save_answers(
    user: User,
    project_id: Any,
    instance_key: Any,
    submitted: Any,
) -> Tuple[ProjectQuestionnaire, SaveAnswersResult]:
    """Persist answers for the instance's current questions.

    Designers answer on their own projects, clients on projects they are
    linked to.  Without an ``instance_key`` the project's first instance is
    used.
    """

    project = get_project_for_user(user, project_id, for_update=True)
    if instance_key in (None, ''):
        instance = project.questionnaires.first()
        if instance is None:
            raise QuestionnaireNotFound('No questionnaire assigned to this project.')
    else:
        instance = find_instance(project, instance_key)
    result = build_answers(instance.get_questions(), submitted, instance.get_answers())
    instance.set_answers(result.answers)
    instance.save(update_fields=['answers'])
    if result.dropped:
        logger.warning(
            'Dropped %s malformed answer entries for instance %s of project %s',
            result.dropped,
            instance.pk,
            project.pk,
        )
    return instance, result


def describe_instance(instance: ProjectQuestionnaire) -> Dict[str, Any]:
    """Render an instance with its answers resolved against current questions."""

    questions = instance.get_questions()
    answers = instance.get_answers()
    resolved = resolve_answers(questions, answers)
    return {
        'id': instance.pk,
        'template_id': instance.template_id,
        'title': instance.title,
        'description': instance.description,
        'room_type': instance.room_type,
        'is_customized': instance.is_customized,
        'synced_at': instance.synced_at.isoformat() if instance.synced_at else None,
        'questions': instance.questions,
        'answers': instance.answers,
        'resolved_answers': [
            {
                'question_id': question.id,
                'question_key': entry.question_key if entry else None,
                'answer': entry.to_dict() if entry else None,
            }
            for question, entry in resolved
        ],
        'orphaned_answers': len(orphaned_answers(questions, answers)),
    }


def list_project_instances(user: User, project_id: Any) -> List[Dict[str, Any]]:
    project = get_project_for_user(user, project_id)
    return [describe_instance(instance) for instance in project.questionnaires.all()]


def purge_orphaned_answers(instance: ProjectQuestionnaire) -> int:
    """Explicitly drop answers that no longer address a current question."""

    kept, removed = purge_orphans(instance.get_questions(), instance.get_answers())
    if removed:
        instance.set_answers(kept)
        instance.save(update_fields=['answers'])
    return removed


__all__ = [
    'AssignResult',
    'QuestionnaireAccessDenied',
    'QuestionnaireError',
    'QuestionnaireNotFound',
    'QuestionnaireValidationError',
    'accessible_projects',
    'assign_or_update_template',
    'clear_project_questionnaires',
    'create_template',
    'delete_template',
    'describe_instance',
    'edit_instance',
    'ensure_designer',
    'find_instance',
    'get_owned_template',
    'list_project_instances',
    'list_templates',
    'materialize',
    'parse_edited_questions',
    'purge_orphaned_answers',
    'remove_instance',
    'save_answers',
    'update_template',
    'user_role',
]
