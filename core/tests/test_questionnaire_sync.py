"""Tests for propagating template edits into project instances."""

from __future__ import annotations

from unittest import mock

from django.contrib.auth.models import User
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase

from core.models import Profile, Project, ProjectQuestionnaire
from core.services import questionnaire_sync
from core.services.questionnaire_answers import resolve_answers
from core.services.questionnaire_sync import sync_template, sync_template_to_projects
from core.services.questionnaires import (
    QuestionnaireNotFound,
    QuestionnaireValidationError,
    assign_or_update_template,
    create_template,
    edit_instance,
    save_answers,
    update_template,
)


class TemplateSyncTests(TestCase):
    def setUp(self) -> None:
        self.designer = User.objects.create_user(username='designer', password='pass')
        Profile.objects.create(user=self.designer, role=Profile.Role.DESIGNER)
        self.template = create_template(
            self.designer,
            {
                'title': 'Living room',
                'room_type': 'living',
                'questions': [{'text': 'Style?', 'options': [{'text': 'Modern'}, {'text': 'Boho'}]}],
            },
        )
        self.project = Project.objects.create(name='Villa', designer=self.designer)
        self.instance = assign_or_update_template(self.designer, self.project.pk, self.template.pk).instance

    def _rename_and_extend_template(self) -> None:
        question = self.template.questions[0]
        update_template(
            self.designer,
            self.template.pk,
            {
                'title': 'Living room v2',
                'questions': [
                    {
                        'id': question['id'],
                        'text': 'Preferred Style?',
                        'options': question['options'] + [{'text': 'Industrial'}],
                    }
                ],
            },
        )
        self.template.refresh_from_db()

    def _add_project_only_question(self) -> None:
        current = self.instance.questions[0]
        edit_instance(
            self.designer,
            self.project.pk,
            self.instance.pk,
            {'questions': [current, {'text': 'Budget note?', 'multiple': False}]},
        )
        self.instance.refresh_from_db()

    def test_safe_sync_updates_uncustomised_instances(self) -> None:
        self._rename_and_extend_template()
        result = sync_template(self.designer, self.template.pk, 'safe')
        self.assertEqual(result.updated_projects, 1)
        self.assertEqual(result.skipped_customized, 0)
        self.instance.refresh_from_db()
        self.assertEqual(self.instance.title, 'Living room v2')
        question = self.instance.get_questions()[0]
        self.assertEqual(question.text, 'Preferred Style?')
        self.assertEqual([o.text for o in question.options], ['Modern', 'Boho', 'Industrial'])

    def test_safe_sync_leaves_customised_instance_untouched(self) -> None:
        self._add_project_only_question()
        before = (self.instance.title, self.instance.questions, self.instance.answers, self.instance.synced_at)
        self._rename_and_extend_template()
        result = sync_template(self.designer, self.template.pk, 'safe')
        self.assertEqual(result.updated_projects, 0)
        self.assertEqual(result.skipped_customized, 1)
        self.instance.refresh_from_db()
        after = (self.instance.title, self.instance.questions, self.instance.answers, self.instance.synced_at)
        self.assertEqual(before, after)
        self.assertTrue(self.instance.is_customized)

    def test_force_sync_applies_changes_and_keeps_project_only_question(self) -> None:
        self._add_project_only_question()
        project_only = self.instance.questions[1]
        self.assertTrue(self.instance.is_customized)
        self._rename_and_extend_template()
        result = sync_template(self.designer, self.template.pk, 'force')
        self.assertEqual(result.updated_projects, 1)
        self.instance.refresh_from_db()
        self.assertFalse(self.instance.is_customized)
        questions = self.instance.get_questions()
        self.assertEqual([q.text for q in questions], ['Preferred Style?', 'Budget note?'])
        self.assertEqual([o.text for o in questions[0].options], ['Modern', 'Boho', 'Industrial'])
        self.assertEqual(self.instance.questions[1], project_only)

    def test_repeated_safe_sync_does_not_drift(self) -> None:
        self._rename_and_extend_template()
        sync_template(self.designer, self.template.pk, 'safe')
        self.instance.refresh_from_db()
        first = self.instance.questions
        sync_template(self.designer, self.template.pk, 'safe')
        self.instance.refresh_from_db()
        self.assertEqual(self.instance.questions, first)

    def test_answers_survive_sync_and_resolve_to_renamed_question(self) -> None:
        question = self.instance.get_questions()[0]
        save_answers(
            self.designer,
            self.project.pk,
            self.instance.pk,
            [{'question_key': question.source_question_id, 'selected_option_keys': [question.options[1].source_option_id]}],
        )
        self.instance.refresh_from_db()
        stored = self.instance.answers
        self._rename_and_extend_template()
        sync_template(self.designer, self.template.pk, 'force')
        self.instance.refresh_from_db()
        self.assertEqual(self.instance.answers, stored)
        (renamed, entry), = resolve_answers(self.instance.get_questions(), self.instance.get_answers())
        self.assertEqual(renamed.text, 'Preferred Style?')
        self.assertEqual(entry.selected_option_texts, ('Boho',))

    def test_failure_in_one_project_does_not_stop_the_batch(self) -> None:
        second = Project.objects.create(name='Loft', designer=self.designer)
        assign_or_update_template(self.designer, second.pk, self.template.pk)
        self._rename_and_extend_template()
        original = questionnaire_sync.apply_template_to_instance

        def flaky(instance, *args, **kwargs):
            if instance.project_id == self.project.pk:
                raise RuntimeError('storage unavailable')
            return original(instance, *args, **kwargs)

        with mock.patch.object(questionnaire_sync, 'apply_template_to_instance', side_effect=flaky):
            with self.assertLogs('core.services.questionnaire_sync', level='ERROR'):
                result = sync_template_to_projects(self.template, 'safe')
        self.assertEqual(result.failed_projects, [self.project.pk])
        self.assertEqual(result.updated_projects, 1)
        self.instance.refresh_from_db()
        self.assertEqual(self.instance.get_questions()[0].text, 'Style?')
        updated = ProjectQuestionnaire.objects.get(project=second)
        self.assertEqual(updated.get_questions()[0].text, 'Preferred Style?')

    def test_only_the_owners_projects_are_synced(self) -> None:
        other = User.objects.create_user(username='other', password='pass')
        Profile.objects.create(user=other, role=Profile.Role.DESIGNER)
        foreign = Project.objects.create(name='Elsewhere', designer=other)
        stray = ProjectQuestionnaire.objects.create(
            project=foreign, template=self.template, title='Copied', questions=[]
        )
        result = sync_template(self.designer, self.template.pk)
        self.assertEqual(result.updated_projects, 1)
        stray.refresh_from_db()
        self.assertEqual(stray.title, 'Copied')

    def test_sync_rejects_unknown_mode_and_foreign_template(self) -> None:
        with self.assertRaises(QuestionnaireValidationError):
            sync_template(self.designer, self.template.pk, 'aggressive')
        other = User.objects.create_user(username='other', password='pass')
        Profile.objects.create(user=other, role=Profile.Role.DESIGNER)
        with self.assertRaises(QuestionnaireNotFound):
            sync_template(other, self.template.pk)

    def test_default_mode_comes_from_settings(self) -> None:
        self._add_project_only_question()
        with self.settings(QUESTIONNAIRE_SYNC_DEFAULT_MODE='force'):
            result = sync_template(self.designer, self.template.pk)
        self.assertEqual(result.mode, 'force')
        self.instance.refresh_from_db()
        self.assertFalse(self.instance.is_customized)


class SyncCommandTests(TestCase):
    def setUp(self) -> None:
        self.designer = User.objects.create_user(username='designer', password='pass')
        Profile.objects.create(user=self.designer, role=Profile.Role.DESIGNER)
        self.template = create_template(self.designer, {'title': 'Kitchen', 'questions': [{'text': 'Layout?'}]})
        self.project = Project.objects.create(name='Flat', designer=self.designer)
        assign_or_update_template(self.designer, self.project.pk, self.template.pk)

    def test_command_runs_sync(self) -> None:
        update_template(self.designer, self.template.pk, {'title': 'Kitchen v2'})
        call_command('sync_questionnaire_template', template=self.template.pk, mode='safe')
        instance = ProjectQuestionnaire.objects.get(project=self.project)
        self.assertEqual(instance.title, 'Kitchen v2')

    def test_command_reports_missing_template(self) -> None:
        with self.assertRaises(CommandError):
            call_command('sync_questionnaire_template', template=9999)
