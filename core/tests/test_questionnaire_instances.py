"""Service-level tests for project questionnaire instances."""

from __future__ import annotations

from io import StringIO

from django.contrib.auth.models import User
from django.core.management import call_command
from django.test import TestCase

from core.models import Profile, Project, ProjectQuestionnaire, QuestionnaireTemplate
from core.services.questionnaire_sync import sync_template
from core.services.questionnaires import (
    QuestionnaireAccessDenied,
    QuestionnaireNotFound,
    assign_or_update_template,
    create_template,
    edit_instance,
    find_instance,
    purge_orphaned_answers,
    save_answers,
    update_template,
)


class InstanceWorkflowTests(TestCase):
    def setUp(self) -> None:
        self.designer = User.objects.create_user(username='designer', password='pass')
        Profile.objects.create(user=self.designer, role=Profile.Role.DESIGNER)
        self.customer = User.objects.create_user(username='customer', password='pass')
        self.project = Project.objects.create(name='Cottage', designer=self.designer)
        self.project.clients.add(self.customer)
        self.template = create_template(
            self.designer,
            {
                'title': 'Bathroom',
                'questions': [
                    {'text': 'Tiles?', 'options': [{'text': 'Marble'}, {'text': 'Slate'}]},
                    {'text': 'Bath or shower?', 'multiple': False},
                ],
            },
        )

    def test_materialised_instance_starts_clean(self) -> None:
        result = assign_or_update_template(self.designer, self.project.pk, self.template.pk)
        self.assertTrue(result.created)
        instance = result.instance
        self.assertEqual(instance.answers, [])
        self.assertFalse(instance.is_customized)
        self.assertIsNotNone(instance.synced_at)
        self.assertEqual(instance.position, 1)
        template_ids = [q['id'] for q in self.template.questions]
        self.assertEqual([q['source_question_id'] for q in instance.questions], template_ids)

    def test_instances_are_appended_in_order(self) -> None:
        other = create_template(self.designer, {'title': 'Hallway'})
        assign_or_update_template(self.designer, self.project.pk, self.template.pk)
        assign_or_update_template(self.designer, self.project.pk, other.pk)
        titles = list(self.project.questionnaires.values_list('title', flat=True))
        self.assertEqual(titles, ['Bathroom', 'Hallway'])

    def test_reassign_drops_project_only_questions_and_keeps_answers(self) -> None:
        instance = assign_or_update_template(self.designer, self.project.pk, self.template.pk).instance
        edit_instance(
            self.designer,
            self.project.pk,
            instance.pk,
            {'questions': instance.questions + [{'text': 'Heated floor?'}]},
        )
        tiles = instance.get_questions()[0]
        save_answers(
            self.customer,
            self.project.pk,
            None,
            [{'question_key': tiles.source_question_id, 'free_text': 'Light colours'}],
        )
        result = assign_or_update_template(self.designer, self.project.pk, self.template.pk)
        self.assertFalse(result.created)
        instance = result.instance
        instance.refresh_from_db()
        self.assertEqual([q.text for q in instance.get_questions()], ['Tiles?', 'Bath or shower?'])
        self.assertEqual(instance.get_answers()[0].free_text, 'Light colours')
        # Reassignment does not reset the customised flag.
        self.assertTrue(instance.is_customized)

    def test_template_edit_keeps_unique_ids(self) -> None:
        first = self.template.questions[0]
        template = update_template(
            self.designer,
            self.template.pk,
            {'questions': [first, dict(first, text='Tiles (copy)?')]},
        )
        ids = [q['id'] for q in template.questions]
        self.assertEqual(ids[0], first['id'])
        self.assertNotEqual(ids[1], first['id'])
        option_ids = [o['id'] for q in template.questions for o in q['options']]
        self.assertEqual(len(option_ids), len(set(option_ids)))

    def test_option_reusing_a_question_id_keeps_the_question_matched(self) -> None:
        instance = assign_or_update_template(self.designer, self.project.pk, self.template.pk).instance
        tiles = instance.get_questions()[0]
        save_answers(self.customer, self.project.pk, None, [{'question_key': tiles.source_question_id, 'free_text': 'Grey'}])
        first = self.template.questions[0]
        update_template(
            self.designer,
            self.template.pk,
            {'questions': [dict(first, options=first['options'] + [{'id': first['id'], 'text': 'Terracotta'}])]},
        )
        self.template.refresh_from_db()
        self.assertEqual(self.template.questions[0]['id'], first['id'])
        self.assertNotEqual(self.template.questions[0]['options'][-1]['id'], first['id'])
        sync_template(self.designer, self.template.pk, 'safe')
        instance.refresh_from_db()
        synced = instance.get_questions()[0]
        self.assertEqual(synced.id, tiles.id)
        self.assertEqual(instance.get_answers()[0].question_key, synced.source_question_id)

    def test_clients_cannot_assign(self) -> None:
        with self.assertRaises(QuestionnaireAccessDenied):
            assign_or_update_template(self.customer, self.project.pk, self.template.pk)

    def test_find_instance_rejects_non_numeric_keys(self) -> None:
        assign_or_update_template(self.designer, self.project.pk, self.template.pk)
        with self.assertRaises(QuestionnaireNotFound):
            find_instance(self.project, 'abc')
        self.assertEqual(find_instance(self.project, self.template.pk).template_id, self.template.pk)

    def test_find_instance_prefers_instance_id_over_template_id(self) -> None:
        shared = QuestionnaireTemplate.objects.create(pk=90001, owner=self.designer, title='Shared number')
        by_template = assign_or_update_template(self.designer, self.project.pk, shared.pk).instance
        by_pk = ProjectQuestionnaire.objects.create(pk=shared.pk, project=self.project, title='Detached')
        self.assertEqual(find_instance(self.project, str(shared.pk)).pk, by_pk.pk)
        self.assertEqual(find_instance(self.project, by_template.pk).pk, by_template.pk)

    def test_save_without_instances_is_not_found(self) -> None:
        with self.assertRaises(QuestionnaireNotFound):
            save_answers(self.customer, self.project.pk, None, [])

    def test_deleting_template_detaches_instances(self) -> None:
        instance = assign_or_update_template(self.designer, self.project.pk, self.template.pk).instance
        self.template.delete()
        instance.refresh_from_db()
        self.assertIsNone(instance.template_id)
        self.assertEqual(instance.title, 'Bathroom')


class OrphanedAnswerTests(TestCase):
    def setUp(self) -> None:
        self.designer = User.objects.create_user(username='designer', password='pass')
        Profile.objects.create(user=self.designer, role=Profile.Role.DESIGNER)
        self.project = Project.objects.create(name='Barn', designer=self.designer)
        self.instance = ProjectQuestionnaire.objects.create(
            project=self.project,
            title='Loose',
            questions=[{'id': 'q1', 'text': 'Roof?', 'multiple': True, 'options': []}],
            answers=[
                {'question_key': 'q1', 'free_text': 'Thatch'},
                {'question_key': 'removed', 'free_text': 'Old answer'},
            ],
        )

    def test_orphans_survive_a_save(self) -> None:
        _, result = save_answers(self.designer, self.project.pk, self.instance.pk, [{'question_key': 'q1', 'free_text': 'Tin'}])
        self.assertEqual(result.orphaned, 1)
        self.instance.refresh_from_db()
        self.assertEqual([a['question_key'] for a in self.instance.answers], ['q1', 'removed'])

    def test_purge_removes_orphans(self) -> None:
        self.assertEqual(purge_orphaned_answers(self.instance), 1)
        self.instance.refresh_from_db()
        self.assertEqual([a['question_key'] for a in self.instance.answers], ['q1'])

    def test_purge_command_dry_run_and_apply(self) -> None:
        out = StringIO()
        call_command('purge_orphaned_answers', project=self.project.pk, dry_run=True, stdout=out)
        self.assertIn('Found 1 orphaned answers', out.getvalue())
        self.instance.refresh_from_db()
        self.assertEqual(len(self.instance.answers), 2)

        out = StringIO()
        call_command('purge_orphaned_answers', stdout=out)
        self.assertIn('Removed 1 orphaned answers', out.getvalue())
        self.instance.refresh_from_db()
        self.assertEqual(len(self.instance.answers), 1)


class ModelShapeTests(TestCase):
    def test_profile_and_project_hold_only_workflow_fields(self) -> None:
        profile_fields = {f.name for f in Profile._meta.concrete_fields}
        project_fields = {f.name for f in Project._meta.concrete_fields}
        self.assertEqual(profile_fields, {'id', 'user', 'role'})
        self.assertEqual(project_fields, {'id', 'name', 'designer', 'created_at', 'updated_at'})
