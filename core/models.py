"""Data models for the StudioDesk application.

This module defines the database schema for the questionnaire workflow that
connects designers with their clients.  A designer owns reusable
``QuestionnaireTemplate`` rows; assigning one to a ``Project`` stamps a
``ProjectQuestionnaire`` copy into that project which can then diverge
(client answers, project-only questions and options) and later be
re-synchronised from the template.  Questions and options are stored as
JSON documents; ``core.services.questionnaire_records`` converts them into
typed records.
"""

from __future__ import annotations

from typing import Iterable, Tuple

from django.contrib.auth.models import User
from django.db import models

from .services.questionnaire_answers import AnswerEntry, dump_answers, load_answers
from .services.questionnaire_records import (
    InstanceQuestion,
    TemplateQuestion,
    dump_instance_questions,
    dump_template_questions,
    load_instance_questions,
    load_template_questions,
)


class Profile(models.Model):
    """Additional information associated with a Django auth User.

    The ``role`` decides which side of the workflow the account is on:
    designers own templates and projects, clients answer the questionnaires
    of projects they are linked to.
    """

    class Role(models.TextChoices):
        DESIGNER = 'designer', 'Designer'
        CLIENT = 'client', 'Client'

    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='profile')
    role = models.CharField(max_length=20, choices=Role.choices, default=Role.CLIENT)

    def __str__(self) -> str:  # pragma: no cover
        return f"Profile of {self.user.username}"


class ActivityLog(models.Model):
    """Tracks designer actions within the application.

    Each log entry records the user who performed the action, a short
    description of the action, optional details and the timestamp.  Logs
    are intended primarily for debugging and auditing purposes.
    """

    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, related_name='activity_logs')
    action = models.CharField(max_length=255)
    details = models.TextField(blank=True, null=True)
    timestamp = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-timestamp']

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.timestamp:%Y-%m-%d %H:%M:%S} - {self.user}: {self.action}"


class Project(models.Model):
    """A design project owned by one designer.

    Linked clients may read the project's questionnaires and submit
    answers.  The project row is the unit of mutation for questionnaire
    synchronisation: its instances are always rewritten together.
    """

    name = models.CharField(max_length=255)
    designer = models.ForeignKey(User, on_delete=models.CASCADE, related_name='designed_projects')
    clients = models.ManyToManyField(User, related_name='client_projects', blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['pk']

    def __str__(self) -> str:  # pragma: no cover
        return self.name


class QuestionnaireTemplate(models.Model):
    """Designer-authored reusable questionnaire definition."""

    owner = models.ForeignKey(User, on_delete=models.CASCADE, related_name='questionnaire_templates')
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True, default='')
    room_type = models.CharField(max_length=100, blank=True, default='')
    questions = models.JSONField(default=list, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['pk']

    def get_questions(self) -> Tuple[TemplateQuestion, ...]:
        return load_template_questions(self.questions)

    def set_questions(self, questions: Iterable[TemplateQuestion]) -> None:
        self.questions = dump_template_questions(questions)

    def __str__(self) -> str:  # pragma: no cover
        return self.title


class ProjectQuestionnaire(models.Model):
    """A project's materialised, possibly diverged copy of a template.

    ``is_customized`` is set whenever a designer edits the instance inside
    the project.  Safe synchronisation leaves customised instances alone;
    forced synchronisation updates them and clears the flag.  ``template``
    becomes ``NULL`` when the originating template is deleted, after which
    the instance can no longer be synchronised.
    """

    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name='questionnaires')
    template = models.ForeignKey(
        QuestionnaireTemplate,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='instances',
    )
    title = models.CharField(max_length=255, blank=True, default='')
    description = models.TextField(blank=True, default='')
    room_type = models.CharField(max_length=100, blank=True, default='')
    questions = models.JSONField(default=list, blank=True)
    answers = models.JSONField(default=list, blank=True)
    is_customized = models.BooleanField(default=False)
    synced_at = models.DateTimeField(null=True, blank=True)
    # Order of the instance inside the project's questionnaire collection.
    position = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['position', 'pk']
        constraints = [
            models.UniqueConstraint(
                fields=['project', 'template'],
                name='unique_template_instance_per_project',
            )
        ]

    def get_questions(self) -> Tuple[InstanceQuestion, ...]:
        return load_instance_questions(self.questions)

    def set_questions(self, questions: Iterable[InstanceQuestion]) -> None:
        self.questions = dump_instance_questions(questions)

    def get_answers(self) -> Tuple[AnswerEntry, ...]:
        return load_answers(self.answers)

    def set_answers(self, answers: Iterable[AnswerEntry]) -> None:
        self.answers = dump_answers(answers)

    def __str__(self) -> str:  # pragma: no cover
        return f"Questionnaire<{self.project_id}:{self.title}>"
