"""Materialise and merge questionnaire templates into project instances.

Two merge policies share a single keyed-matching primitive:

``MergePolicy.TEMPLATE_AUTHORITATIVE``
    Used when a designer re-assigns a template to a project that already has
    an instance of it.  The result holds exactly one entry per template item.
    Existing items are matched by stable key (source id, else local id) and
    anything the template no longer contains is dropped, project-only
    additions included.

``MergePolicy.PRESERVE_PROJECT_ONLY``
    Used by template synchronisation.  Only items carrying a source id are
    matched; project-only items are appended untouched after the
    template-derived ones, at both the question and the option level.

Matched items keep their local id and any extra fields; the fields the
template owns (question ``text``/``multiple``, option ``text``/``image_url``)
are overwritten.  When several existing items claim the same source id the
first one wins and the rest are handled as unmatched leftovers.  All
functions are pure and return new tuples.
"""
from __future__ import annotations

import enum
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from .questionnaire_records import (
    InstanceOption,
    InstanceQuestion,
    TemplateOption,
    TemplateQuestion,
    new_local_id,
)

T = TypeVar('T')


class MergePolicy(enum.Enum):
    TEMPLATE_AUTHORITATIVE = 'template_authoritative'
    PRESERVE_PROJECT_ONLY = 'preserve_project_only'

    @property
    def keeps_unmatched(self) -> bool:
        return self is MergePolicy.PRESERVE_PROJECT_ONLY


def materialize_option(option: TemplateOption) -> InstanceOption:
    return InstanceOption(
        id=new_local_id(),
        text=option.text,
        image_url=option.image_url,
        source_option_id=option.id,
    )


def materialize_question(question: TemplateQuestion) -> InstanceQuestion:
    """Create a fresh instance question stamped with its template source."""

    return InstanceQuestion(
        id=new_local_id(),
        text=question.text,
        multiple=question.multiple,
        options=tuple(materialize_option(option) for option in question.options),
        source_question_id=question.id,
    )


def materialize_questions(template_questions: Iterable[TemplateQuestion]) -> Tuple[InstanceQuestion, ...]:
    """Deep-copy template questions into a brand new instance."""

    return tuple(materialize_question(question) for question in template_questions)


def _index_existing(
    existing: Sequence[T],
    source_of: Callable[[T], Optional[str]],
    local_of: Callable[[T], str],
    policy: MergePolicy,
) -> Tuple[Dict[str, T], List[T]]:
    """Split existing items into a match index and unmatched leftovers.

    Under the authoritative policy every item is indexed by its stable key.
    Under the preserving policy only sourced items are indexed.  Duplicate
    keys keep the first item; later ones become leftovers.
    """

    index: Dict[str, T] = {}
    leftovers: List[T] = []
    for item in existing:
        source = source_of(item)
        if source:
            key = str(source)
        elif policy is MergePolicy.TEMPLATE_AUTHORITATIVE:
            key = str(local_of(item))
        else:
            leftovers.append(item)
            continue
        if key in index:
            leftovers.append(item)
            continue
        index[key] = item
    return index, leftovers


def merge_options(
    existing: Sequence[InstanceOption],
    template_options: Sequence[TemplateOption],
    policy: MergePolicy,
) -> Tuple[InstanceOption, ...]:
    index, leftovers = _index_existing(
        existing,
        lambda option: option.source_option_id,
        lambda option: option.id,
        policy,
    )
    merged: List[InstanceOption] = []
    for template_option in template_options:
        current = index.get(str(template_option.id))
        if current is None:
            merged.append(materialize_option(template_option))
            continue
        merged.append(
            replace(
                current,
                text=template_option.text,
                image_url=template_option.image_url,
                source_option_id=current.source_option_id or template_option.id,
            )
        )
    if policy.keeps_unmatched:
        merged.extend(leftovers)
    return tuple(merged)


def merge_questions(
    existing: Sequence[InstanceQuestion],
    template_questions: Sequence[TemplateQuestion],
    policy: MergePolicy,
) -> Tuple[InstanceQuestion, ...]:
    """Merge template questions into existing instance questions.

    Template-derived questions come first, in template order.  With
    ``PRESERVE_PROJECT_ONLY`` the unmatched existing questions follow in
    their original relative order.
    """

    index, leftovers = _index_existing(
        existing,
        lambda question: question.source_question_id,
        lambda question: question.id,
        policy,
    )
    merged: List[InstanceQuestion] = []
    for template_question in template_questions:
        current = index.get(str(template_question.id))
        if current is None:
            merged.append(materialize_question(template_question))
            continue
        merged.append(
            replace(
                current,
                text=template_question.text,
                multiple=template_question.multiple,
                source_question_id=current.source_question_id or template_question.id,
                options=merge_options(current.options, template_question.options, policy),
            )
        )
    if policy.keeps_unmatched:
        merged.extend(leftovers)
    return tuple(merged)


def merge_for_assign(
    existing: Sequence[InstanceQuestion],
    template_questions: Sequence[TemplateQuestion],
) -> Tuple[InstanceQuestion, ...]:
    """Make an instance match its template again on re-assignment."""

    return merge_questions(existing, template_questions, MergePolicy.TEMPLATE_AUTHORITATIVE)


def merge_for_sync(
    existing: Sequence[InstanceQuestion],
    template_questions: Sequence[TemplateQuestion],
) -> Tuple[InstanceQuestion, ...]:
    """Propagate template edits while keeping every project-only addition."""

    return merge_questions(existing, template_questions, MergePolicy.PRESERVE_PROJECT_ONLY)


__all__ = [
    'MergePolicy',
    'materialize_question',
    'materialize_questions',
    'merge_for_assign',
    'merge_for_sync',
    'merge_options',
    'merge_questions',
]
