"""Tests for materialising templates and the two merge policies."""

from __future__ import annotations

from dataclasses import replace

from django.test import SimpleTestCase

from core.services.questionnaire_merge import (
    MergePolicy,
    materialize_questions,
    merge_for_assign,
    merge_for_sync,
    merge_questions,
)
from core.services.questionnaire_records import (
    InstanceOption,
    InstanceQuestion,
    TemplateOption,
    TemplateQuestion,
)


def style_template(text: str = 'Style?', extra_option: bool = False):
    options = [TemplateOption(id='modern', text='Modern'), TemplateOption(id='boho', text='Boho')]
    if extra_option:
        options.append(TemplateOption(id='industrial', text='Industrial'))
    return (TemplateQuestion(id='A', text=text, multiple=True, options=tuple(options)),)


class MaterializeTests(SimpleTestCase):
    def test_copies_are_stamped_with_source_ids(self) -> None:
        instance = materialize_questions(style_template())
        self.assertEqual(len(instance), 1)
        question = instance[0]
        self.assertEqual(question.source_question_id, 'A')
        self.assertNotEqual(question.id, 'A')
        self.assertEqual([o.source_option_id for o in question.options], ['modern', 'boho'])
        self.assertEqual([o.text for o in question.options], ['Modern', 'Boho'])


class SyncMergeTests(SimpleTestCase):
    def setUp(self) -> None:
        materialized = materialize_questions(style_template())[0]
        self.sourced = replace(
            materialized,
            options=materialized.options + (InstanceOption(id='local-o', text='Velvet'),),
            extra={'note': 'kitchen'},
        )
        self.project_only = InstanceQuestion(id='B', text='Budget note?', multiple=False)
        self.existing = (self.project_only, self.sourced)

    def test_template_edits_applied_and_project_only_content_kept(self) -> None:
        merged = merge_for_sync(self.existing, style_template('Preferred Style?', extra_option=True))
        self.assertEqual([q.text for q in merged], ['Preferred Style?', 'Budget note?'])
        question = merged[0]
        self.assertEqual(question.id, self.sourced.id)
        self.assertEqual(question.extra, {'note': 'kitchen'})
        self.assertEqual([o.text for o in question.options], ['Modern', 'Boho', 'Industrial', 'Velvet'])
        self.assertIsNone(question.options[-1].source_option_id)
        self.assertEqual(merged[1], self.project_only)

    def test_local_ids_survive_and_sync_is_idempotent(self) -> None:
        template = style_template('Preferred Style?', extra_option=True)
        first = merge_for_sync(self.existing, template)
        second = merge_for_sync(first, template)
        self.assertEqual(first, second)
        self.assertEqual(
            [o.id for o in first[0].options[:2]],
            [o.id for o in self.sourced.options[:2]],
        )

    def test_removed_template_question_is_dropped_but_project_only_stays(self) -> None:
        merged = merge_for_sync(self.existing, ())
        self.assertEqual(merged, (self.project_only,))

    def test_duplicate_source_claims_first_wins(self) -> None:
        duplicate = replace(self.sourced, id='dup', text='Old copy')
        merged = merge_for_sync((self.sourced, duplicate), style_template('Renamed'))
        self.assertEqual([q.id for q in merged], [self.sourced.id, 'dup'])
        self.assertEqual(merged[0].text, 'Renamed')
        self.assertEqual(merged[1].text, 'Old copy')


class AssignMergeTests(SimpleTestCase):
    def test_template_is_authoritative(self) -> None:
        existing = materialize_questions(
            style_template() + (TemplateQuestion(id='obsolete', text='Gone soon'),)
        ) + (InstanceQuestion(id='B', text='Budget note?'),)
        merged = merge_for_assign(existing, style_template('Preferred Style?'))
        self.assertEqual(len(merged), 1)
        self.assertEqual(merged[0].source_question_id, 'A')
        self.assertEqual(merged[0].id, existing[0].id)
        self.assertEqual(merged[0].text, 'Preferred Style?')

    def test_assign_drops_what_sync_preserves(self) -> None:
        existing = materialize_questions(style_template()) + (InstanceQuestion(id='B', text='Budget note?'),)
        assigned = merge_for_assign(existing, style_template())
        synced = merge_for_sync(existing, style_template())
        self.assertNotIn('B', [q.id for q in assigned])
        self.assertIn('B', [q.id for q in synced])

    def test_unsourced_item_matches_template_by_local_id(self) -> None:
        existing = (
            InstanceQuestion(
                id='A',
                text='Legacy',
                options=(InstanceOption(id='modern', text='Old modern', extra={'pinned': True}),),
            ),
        )
        merged = merge_questions(existing, style_template(), MergePolicy.TEMPLATE_AUTHORITATIVE)
        self.assertEqual(merged[0].id, 'A')
        self.assertEqual(merged[0].source_question_id, 'A')
        self.assertEqual(merged[0].options[0].extra, {'pinned': True})
        self.assertEqual(merged[0].options[0].source_option_id, 'modern')
        self.assertEqual([o.text for o in merged[0].options], ['Modern', 'Boho'])
