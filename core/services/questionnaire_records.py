"""Typed records for questionnaire templates and project instances.

Templates and project instances are persisted as JSON lists of question
dictionaries.  This module converts those loosely shaped payloads into
frozen dataclasses so the merge and answer layers work on explicit fields
instead of ad hoc dictionary spreads.

Every question and option carries a local ``id`` that is unique within its
own document.  Instance items may also carry a ``source_*_id`` pointing at
the template item they were copied from; items without one were added
directly inside a project.  The stable key used to address an instance item
across merges prefers the source id and falls back to the local id.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple
from uuid import uuid4

QUESTION_FIELDS = ('id', 'source_question_id', 'text', 'multiple', 'options')
OPTION_FIELDS = ('id', 'source_option_id', 'text', 'image_url')


def new_local_id() -> str:
    """Return a fresh opaque identifier for a question or option."""

    return uuid4().hex


@dataclass(frozen=True)
class TemplateOption:
    id: str
    text: str
    image_url: str = ''


@dataclass(frozen=True)
class TemplateQuestion:
    id: str
    text: str
    multiple: bool = True
    options: Tuple[TemplateOption, ...] = ()


@dataclass(frozen=True)
class InstanceOption:
    """Option inside a project instance.

    ``extra`` keeps fields the template does not own so they survive a merge.
    """

    id: str
    text: str
    image_url: str = ''
    source_option_id: Optional[str] = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_project_only(self) -> bool:
        return not self.source_option_id


@dataclass(frozen=True)
class InstanceQuestion:
    """Question inside a project instance."""

    id: str
    text: str
    multiple: bool = True
    options: Tuple[InstanceOption, ...] = ()
    source_question_id: Optional[str] = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_project_only(self) -> bool:
        return not self.source_question_id


def question_key(question: InstanceQuestion) -> str:
    """Stable key of an instance question: source id, else local id."""

    return str(question.source_question_id or question.id)


def option_key(option: InstanceOption) -> str:
    """Stable key of an instance option: source id, else local id."""

    return str(option.source_option_id or option.id)


def _clean_text(value: Any) -> str:
    return str(value).strip() if value is not None else ''


def _clean_id(value: Any) -> Optional[str]:
    text = _clean_text(value)
    return text or None


def coerce_bool(value: Any, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1', 'yes', 'on')
    return bool(value)


def _as_list(value: Any) -> List[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    return []


# ---------------------------------------------------------------------------
# Template payloads
# ---------------------------------------------------------------------------


class TemplatePayloadError(ValueError):
    """Raised when a template question payload is malformed."""


def _claim_id(raw_id: Any, known_ids: Set[str], claimed: Set[str]) -> str:
    """Keep ``raw_id`` when it already belongs to the template, else mint one."""

    candidate = _clean_id(raw_id)
    if candidate and candidate in known_ids and candidate not in claimed:
        claimed.add(candidate)
        return candidate
    fresh = new_local_id()
    claimed.add(fresh)
    return fresh


def template_ids(questions: Iterable[TemplateQuestion]) -> Tuple[Set[str], Set[str]]:
    """Return the question ids and the option ids used by a template."""

    question_ids: Set[str] = set()
    option_ids: Set[str] = set()
    for question in questions:
        question_ids.add(question.id)
        for option in question.options:
            option_ids.add(option.id)
    return question_ids, option_ids


def parse_template_questions(
    payload: Any,
    known_question_ids: Optional[Iterable[str]] = None,
    known_option_ids: Optional[Iterable[str]] = None,
) -> Tuple[TemplateQuestion, ...]:
    """Build template questions from a submitted payload.

    A question keeps its ``id`` only when it is one of the template's
    current question ids, and an option only when it is one of its current
    option ids.  Anything else receives a fresh identifier so template ids
    stay unique and are never reused for new content.
    """

    if not isinstance(payload, (list, tuple)):
        raise TemplatePayloadError('Questions must be provided as a list.')
    known_questions = set(known_question_ids or ())
    known_options = set(known_option_ids or ())
    claimed: Set[str] = set()
    questions: List[TemplateQuestion] = []
    for index, raw in enumerate(payload, start=1):
        if not isinstance(raw, Mapping):
            raise TemplatePayloadError(f'Question {index} must be an object.')
        text = _clean_text(raw.get('text'))
        if not text:
            raise TemplatePayloadError(f'Question {index} requires text.')
        question_id = _claim_id(raw.get('id'), known_questions, claimed)
        options: List[TemplateOption] = []
        for opt_index, raw_option in enumerate(_as_list(raw.get('options')), start=1):
            if not isinstance(raw_option, Mapping):
                raise TemplatePayloadError(f'Option {opt_index} of question {index} must be an object.')
            option_text = _clean_text(raw_option.get('text'))
            if not option_text:
                raise TemplatePayloadError(f'Option {opt_index} of question {index} requires text.')
            options.append(
                TemplateOption(
                    id=_claim_id(raw_option.get('id'), known_options, claimed),
                    text=option_text,
                    image_url=_clean_text(raw_option.get('image_url')),
                )
            )
        questions.append(
            TemplateQuestion(
                id=question_id,
                text=text,
                multiple=coerce_bool(raw.get('multiple'), default=True),
                options=tuple(options),
            )
        )
    return tuple(questions)


def load_template_questions(stored: Any) -> Tuple[TemplateQuestion, ...]:
    """Read template questions exactly as they were persisted."""

    questions: List[TemplateQuestion] = []
    for raw in _as_list(stored):
        if not isinstance(raw, Mapping):
            continue
        questions.append(
            TemplateQuestion(
                id=str(raw.get('id')),
                text=_clean_text(raw.get('text')),
                multiple=coerce_bool(raw.get('multiple'), default=True),
                options=tuple(
                    TemplateOption(
                        id=str(opt.get('id')),
                        text=_clean_text(opt.get('text')),
                        image_url=_clean_text(opt.get('image_url')),
                    )
                    for opt in _as_list(raw.get('options'))
                    if isinstance(opt, Mapping)
                ),
            )
        )
    return tuple(questions)


def dump_template_questions(questions: Iterable[TemplateQuestion]) -> List[Dict[str, Any]]:
    return [
        {
            'id': question.id,
            'text': question.text,
            'multiple': question.multiple,
            'options': [
                {'id': option.id, 'text': option.text, 'image_url': option.image_url}
                for option in question.options
            ],
        }
        for question in questions
    ]


# ---------------------------------------------------------------------------
# Instance payloads
# ---------------------------------------------------------------------------


def _load_instance_option(raw: Mapping[str, Any]) -> InstanceOption:
    return InstanceOption(
        id=_clean_id(raw.get('id')) or new_local_id(),
        text=_clean_text(raw.get('text')),
        image_url=_clean_text(raw.get('image_url')),
        source_option_id=_clean_id(raw.get('source_option_id')),
        extra={k: v for k, v in raw.items() if k not in OPTION_FIELDS},
    )


def load_instance_questions(stored: Any) -> Tuple[InstanceQuestion, ...]:
    """Read instance questions from their persisted JSON form."""

    questions: List[InstanceQuestion] = []
    for raw in _as_list(stored):
        if not isinstance(raw, Mapping):
            continue
        questions.append(
            InstanceQuestion(
                id=_clean_id(raw.get('id')) or new_local_id(),
                text=_clean_text(raw.get('text')),
                multiple=coerce_bool(raw.get('multiple'), default=True),
                options=tuple(
                    _load_instance_option(opt)
                    for opt in _as_list(raw.get('options'))
                    if isinstance(opt, Mapping)
                ),
                source_question_id=_clean_id(raw.get('source_question_id')),
                extra={k: v for k, v in raw.items() if k not in QUESTION_FIELDS},
            )
        )
    return tuple(questions)


def _dump_instance_option(option: InstanceOption) -> Dict[str, Any]:
    data: Dict[str, Any] = dict(option.extra)
    data['id'] = option.id
    if option.source_option_id:
        data['source_option_id'] = option.source_option_id
    data['text'] = option.text
    data['image_url'] = option.image_url
    return data


def dump_instance_questions(questions: Iterable[InstanceQuestion]) -> List[Dict[str, Any]]:
    """Serialise instance questions, writing unmodelled fields back untouched."""

    dumped: List[Dict[str, Any]] = []
    for question in questions:
        data: Dict[str, Any] = dict(question.extra)
        data['id'] = question.id
        if question.source_question_id:
            data['source_question_id'] = question.source_question_id
        data['text'] = question.text
        data['multiple'] = question.multiple
        data['options'] = [_dump_instance_option(option) for option in question.options]
        dumped.append(data)
    return dumped


__all__ = [
    'InstanceOption',
    'InstanceQuestion',
    'TemplateOption',
    'TemplatePayloadError',
    'TemplateQuestion',
    'coerce_bool',
    'dump_instance_questions',
    'dump_template_questions',
    'load_instance_questions',
    'load_template_questions',
    'new_local_id',
    'option_key',
    'parse_template_questions',
    'question_key',
    'template_ids',
]
