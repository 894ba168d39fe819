"""Answer storage keyed by stable question and option keys.

Answers are stored on a project instance as a list of dictionaries::

    {
        'question_key': '<stable question key>',
        'question_text': '<text at the time of saving>',
        'selected_option_keys': ['<stable option key>', ...],
        'selected_option_texts': ['<option text at the time of saving>', ...],
        'free_text': '...',
    }

Merges never rewrite this list.  Because the keys prefer template source ids,
an answer keeps resolving after a sync renames its question.  Entries whose
question disappeared are left in place (orphaned) until
``purge_orphaned_answers`` is called explicitly.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .questionnaire_records import InstanceQuestion, option_key, question_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnswerEntry:
    question_key: str
    question_text: str = ''
    selected_option_keys: Tuple[str, ...] = ()
    selected_option_texts: Tuple[str, ...] = ()
    free_text: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'question_key': self.question_key,
            'question_text': self.question_text,
            'selected_option_keys': list(self.selected_option_keys),
            'selected_option_texts': list(self.selected_option_texts),
            'free_text': self.free_text,
        }


@dataclass(frozen=True)
class SaveAnswersResult:
    answers: Tuple[AnswerEntry, ...]
    saved: int
    dropped: int
    orphaned: int


def load_answers(stored: Any) -> Tuple[AnswerEntry, ...]:
    """Read persisted answers, tolerating the original ``question_id`` key."""

    entries: List[AnswerEntry] = []
    if not isinstance(stored, (list, tuple)):
        return ()
    for raw in stored:
        if not isinstance(raw, Mapping):
            continue
        key = str(raw.get('question_key') or raw.get('question_id') or '').strip()
        if not key:
            continue
        entries.append(
            AnswerEntry(
                question_key=key,
                question_text=str(raw.get('question_text') or ''),
                selected_option_keys=tuple(str(k) for k in raw.get('selected_option_keys') or ()),
                selected_option_texts=tuple(str(t) for t in raw.get('selected_option_texts') or ()),
                free_text=str(raw.get('free_text') or ''),
            )
        )
    return tuple(entries)


def dump_answers(entries: Iterable[AnswerEntry]) -> List[Dict[str, Any]]:
    return [entry.to_dict() for entry in entries]


def _question_aliases(questions: Sequence[InstanceQuestion]) -> Dict[str, InstanceQuestion]:
    """Map both stable keys and local ids to their question.

    Stable keys take precedence so a local id can never shadow another
    question's source id.
    """

    aliases: Dict[str, InstanceQuestion] = {}
    for question in questions:
        aliases.setdefault(str(question.id), question)
    for question in questions:
        aliases[question_key(question)] = question
    return aliases


def _submitted_selections(raw: Mapping[str, Any]) -> Optional[List[str]]:
    if 'selected_option_keys' in raw:
        values = raw.get('selected_option_keys')
    else:
        values = raw.get('selected_options')
    if values is None:
        return []
    if not isinstance(values, (list, tuple)):
        return None
    keys: List[str] = []
    for value in values:
        if isinstance(value, Mapping):
            value = value.get('option_key') or value.get('option_id')
        text = str(value).strip() if value is not None else ''
        if text:
            keys.append(text)
    return keys


def _index_submitted(
    questions: Sequence[InstanceQuestion],
    submitted: Any,
) -> Tuple[Dict[str, Mapping[str, Any]], int]:
    """Key submitted entries by the stable key of the question they target."""

    aliases = _question_aliases(questions)
    indexed: Dict[str, Mapping[str, Any]] = {}
    dropped = 0
    if not isinstance(submitted, (list, tuple)):
        return indexed, 0
    for position, raw in enumerate(submitted):
        if not isinstance(raw, Mapping):
            logger.warning('Dropping answer #%s: expected an object, got %s', position, type(raw).__name__)
            dropped += 1
            continue
        raw_key = str(raw.get('question_key') or raw.get('question_id') or '').strip()
        if not raw_key:
            logger.warning('Dropping answer #%s: no question key supplied', position)
            dropped += 1
            continue
        if _submitted_selections(raw) is None:
            logger.warning('Dropping answer for %s: selections must be a list', raw_key)
            dropped += 1
            continue
        question = aliases.get(raw_key)
        if question is None:
            logger.warning('Dropping answer for %s: question is not part of this questionnaire', raw_key)
            dropped += 1
            continue
        indexed.setdefault(question_key(question), raw)
    return indexed, dropped


def _build_entry(question: InstanceQuestion, raw: Mapping[str, Any]) -> Optional[AnswerEntry]:
    by_key = {}
    for option in question.options:
        by_key.setdefault(str(option.id), option)
    for option in question.options:
        by_key[option_key(option)] = option

    selected_keys: List[str] = []
    selected_texts: List[str] = []
    for submitted_key in _submitted_selections(raw) or []:
        option = by_key.get(submitted_key)
        if option is None:
            continue
        key = option_key(option)
        if key in selected_keys:
            continue
        selected_keys.append(key)
        selected_texts.append(option.text)
    if not question.multiple:
        selected_keys = selected_keys[:1]
        selected_texts = selected_texts[:1]

    free_text = str(raw.get('free_text') or '').strip()
    if not selected_keys and not free_text:
        return None
    return AnswerEntry(
        question_key=question_key(question),
        question_text=question.text,
        selected_option_keys=tuple(selected_keys),
        selected_option_texts=tuple(selected_texts),
        free_text=free_text,
    )


def orphaned_answers(
    questions: Sequence[InstanceQuestion],
    answers: Iterable[AnswerEntry],
) -> Tuple[AnswerEntry, ...]:
    """Return stored answers whose question is no longer in the instance."""

    aliases = _question_aliases(questions)
    return tuple(entry for entry in answers if entry.question_key not in aliases)


def build_answers(
    questions: Sequence[InstanceQuestion],
    submitted: Any,
    existing: Iterable[AnswerEntry] = (),
) -> SaveAnswersResult:
    """Derive the answers to persist for the instance's current questions.

    Submitted entries are matched to questions by stable key (or local id),
    selections referencing options that are not on the question are
    discarded, and entries with neither selections nor text are omitted.
    Previously stored orphaned answers are carried over unchanged.
    """

    indexed, dropped = _index_submitted(questions, submitted)
    entries: List[AnswerEntry] = []
    for question in questions:
        raw = indexed.get(question_key(question))
        if raw is None:
            continue
        entry = _build_entry(question, raw)
        if entry is not None:
            entries.append(entry)
    orphans = orphaned_answers(questions, existing)
    return SaveAnswersResult(
        answers=tuple(entries) + orphans,
        saved=len(entries),
        dropped=dropped,
        orphaned=len(orphans),
    )


def resolve_answers(
    questions: Sequence[InstanceQuestion],
    answers: Iterable[AnswerEntry],
) -> List[Tuple[InstanceQuestion, Optional[AnswerEntry]]]:
    """Pair every current question with its stored answer, if any.

    Answers saved under a question's local id (before it gained a source id)
    still resolve to that question.
    """

    stored: Dict[str, AnswerEntry] = {}
    for entry in answers:
        stored.setdefault(entry.question_key, entry)
    resolved: List[Tuple[InstanceQuestion, Optional[AnswerEntry]]] = []
    for question in questions:
        entry = stored.get(question_key(question)) or stored.get(str(question.id))
        resolved.append((question, entry))
    return resolved


def purge_orphans(
    questions: Sequence[InstanceQuestion],
    answers: Iterable[AnswerEntry],
) -> Tuple[Tuple[AnswerEntry, ...], int]:
    """Drop answers that no longer address a current question."""

    aliases = _question_aliases(questions)
    kept: List[AnswerEntry] = []
    removed = 0
    for entry in answers:
        if entry.question_key in aliases:
            kept.append(entry)
        else:
            removed += 1
    return tuple(kept), removed


__all__ = [
    'AnswerEntry',
    'SaveAnswersResult',
    'build_answers',
    'dump_answers',
    'load_answers',
    'orphaned_answers',
    'purge_orphans',
    'resolve_answers',
]
