"""JSON API views for the questionnaire workflow.

These views are thin wrappers around ``core.services.questionnaires`` and
``core.services.questionnaire_sync``: they decode the request body, pass
the authenticated user explicitly to the service layer and translate
service exceptions into JSON error responses.  Designer actions are also
recorded in the activity log.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict

from django.contrib.auth.decorators import login_required
from django.contrib.auth.models import User
from django.http import HttpRequest, JsonResponse
from django.views.decorators.http import require_http_methods, require_POST

from core.services.questionnaire_sync import sync_template
from core.services.questionnaires import (
    QuestionnaireAccessDenied,
    QuestionnaireError,
    QuestionnaireNotFound,
    assign_or_update_template,
    clear_project_questionnaires,
    create_template,
    delete_template,
    describe_instance,
    edit_instance,
    ensure_designer,
    get_owned_template,
    list_project_instances,
    list_templates,
    remove_instance,
    save_answers,
    update_template,
)

from .forms import AnswerSubmissionForm, TemplateAssignForm, TemplateSyncForm
from .models import ActivityLog, QuestionnaireTemplate

logger = logging.getLogger(__name__)


class InvalidPayload(Exception):
    """Raised when a request body is not a JSON object."""


# Helper function to log user actions
def log_activity(user: User, action: str, details: str = '') -> None:
    """Create a log entry recording the specified action.

    Args:
        user: The user who performed the action.
        action: A short description of the action (e.g., "Synced template").
        details: Optional additional information about the action.
    """
    try:
        ActivityLog.objects.create(user=user, action=action, details=details)
    except Exception:
        # Audit logging must not break the main flow
        logger.warning('Could not record activity "%s" for user %s', action, getattr(user, 'pk', None))


def _json_body(request: HttpRequest) -> Dict[str, Any]:
    try:
        payload = json.loads(request.body.decode('utf-8')) if request.body else {}
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise InvalidPayload('Invalid payload.')
    if not isinstance(payload, dict):
        raise InvalidPayload('Invalid payload.')
    return payload


def _error_response(exc: Exception) -> JsonResponse:
    if isinstance(exc, QuestionnaireNotFound):
        status = 404
    elif isinstance(exc, QuestionnaireAccessDenied):
        status = 403
    else:
        status = 400
    return JsonResponse({'error': str(exc)}, status=status)


def _form_error(form) -> JsonResponse:
    return JsonResponse({'error': 'Invalid payload.', 'fields': form.errors.get_json_data()}, status=400)


def template_payload(template: QuestionnaireTemplate) -> Dict[str, Any]:
    return {
        'id': template.pk,
        'title': template.title,
        'description': template.description,
        'room_type': template.room_type,
        'questions': template.questions,
        'created_at': template.created_at.isoformat() if template.created_at else None,
        'updated_at': template.updated_at.isoformat() if template.updated_at else None,
    }


@login_required
@require_http_methods(["GET", "POST"])
def template_collection(request: HttpRequest) -> JsonResponse:
    """List the designer's templates or create a new one."""

    try:
        if request.method == 'GET':
            templates = [template_payload(t) for t in list_templates(request.user)]
            return JsonResponse({'templates': templates})
        template = create_template(request.user, _json_body(request))
    except (QuestionnaireError, InvalidPayload) as exc:
        return _error_response(exc)
    log_activity(request.user, 'Created questionnaire template', f'template={template.pk}')
    return JsonResponse(template_payload(template), status=201)


@login_required
@require_http_methods(["GET", "PUT", "DELETE"])
def template_detail(request: HttpRequest, template_id: int) -> JsonResponse:
    """Read, update or delete a single template owned by the designer."""

    user = request.user
    try:
        if request.method == 'GET':
            ensure_designer(user)
            return JsonResponse(template_payload(get_owned_template(user, template_id)))
        if request.method == 'DELETE':
            delete_template(user, template_id)
            log_activity(user, 'Deleted questionnaire template', f'template={template_id}')
            return JsonResponse({'ok': True, 'deleted': template_id})
        template = update_template(user, template_id, _json_body(request))
    except (QuestionnaireError, InvalidPayload) as exc:
        return _error_response(exc)
    log_activity(user, 'Updated questionnaire template', f'template={template.pk}')
    return JsonResponse(template_payload(template))


@login_required
@require_POST
def template_sync(request: HttpRequest, template_id: int) -> JsonResponse:
    """Propagate a template into every project that uses it."""

    try:
        form = TemplateSyncForm(_json_body(request))
    except InvalidPayload as exc:
        return _error_response(exc)
    if not form.is_valid():
        return _form_error(form)
    try:
        result = sync_template(request.user, template_id, form.cleaned_data.get('mode'))
    except QuestionnaireError as exc:
        return _error_response(exc)
    log_activity(
        request.user,
        'Synced questionnaire template',
        f'template={template_id} mode={result.mode} updated={result.updated_projects} '
        f'skipped={result.skipped_customized} failed={len(result.failed_projects)}',
    )
    payload = result.as_dict()
    payload['message'] = 'Sync completed'
    return JsonResponse(payload)


@login_required
@require_http_methods(["GET"])
def project_questionnaires(request: HttpRequest, project_id: int) -> JsonResponse:
    """Return the project's instances with answers resolved to current questions."""

    try:
        instances = list_project_instances(request.user, project_id)
    except QuestionnaireError as exc:
        return _error_response(exc)
    return JsonResponse({'project_id': project_id, 'questionnaires': instances})


@login_required
@require_POST
def project_questionnaire_assign(request: HttpRequest, project_id: int) -> JsonResponse:
    """Assign a template to the project, or clear all instances when none is given."""

    try:
        form = TemplateAssignForm(_json_body(request))
    except InvalidPayload as exc:
        return _error_response(exc)
    if not form.is_valid():
        return _form_error(form)
    template_id = form.cleaned_data.get('template_id')
    try:
        if template_id is None:
            removed = clear_project_questionnaires(request.user, project_id)
            log_activity(request.user, 'Cleared project questionnaires', f'project={project_id}')
            return JsonResponse({'ok': True, 'removed': removed})
        result = assign_or_update_template(request.user, project_id, template_id)
    except QuestionnaireError as exc:
        return _error_response(exc)
    log_activity(
        request.user,
        'Assigned questionnaire template' if result.created else 'Updated questionnaire from template',
        f'project={project_id} template={template_id} instance={result.instance.pk}',
    )
    return JsonResponse(
        {'created': result.created, 'questionnaire': describe_instance(result.instance)},
        status=201 if result.created else 200,
    )


@login_required
@require_POST
def project_questionnaire_answers(request: HttpRequest, project_id: int) -> JsonResponse:
    """Save answers for one of the project's questionnaire instances."""

    try:
        form = AnswerSubmissionForm(_json_body(request))
    except InvalidPayload as exc:
        return _error_response(exc)
    if not form.is_valid():
        return _form_error(form)
    try:
        instance, result = save_answers(
            request.user,
            project_id,
            form.cleaned_data.get('instance') or None,
            form.cleaned_data.get('answers'),
        )
    except QuestionnaireError as exc:
        return _error_response(exc)
    return JsonResponse(
        {
            'saved': result.saved,
            'dropped': result.dropped,
            'orphaned': result.orphaned,
            'questionnaire': describe_instance(instance),
        }
    )


@login_required
@require_http_methods(["PUT", "DELETE"])
def project_questionnaire_detail(request: HttpRequest, project_id: int, instance_id: int) -> JsonResponse:
    """Edit a project's instance directly (marking it customised) or remove it."""

    user = request.user
    try:
        if request.method == 'DELETE':
            remove_instance(user, project_id, instance_id)
            log_activity(user, 'Removed project questionnaire', f'project={project_id} instance={instance_id}')
            return JsonResponse({'ok': True, 'removed': instance_id})
        instance = edit_instance(user, project_id, instance_id, _json_body(request))
    except (QuestionnaireError, InvalidPayload) as exc:
        return _error_response(exc)
    log_activity(user, 'Edited project questionnaire', f'project={project_id} instance={instance.pk}')
    return JsonResponse({'questionnaire': describe_instance(instance)})
