"""Forms used to validate questionnaire API payloads.

The JSON views decode request bodies into dictionaries and bind them to
these forms, mirroring how the rest of the application validates user
input before handing it to the service layer.
"""

from __future__ import annotations

from django import forms

from .services.questionnaire_sync import SYNC_MODE_FORCE, SYNC_MODE_SAFE


class TemplateAssignForm(forms.Form):
    """Select the template to assign; leaving it empty clears the project."""

    template_id = forms.IntegerField(required=False, min_value=1)


class TemplateSyncForm(forms.Form):
    """Choose how template edits are pushed into project instances."""

    mode = forms.ChoiceField(
        choices=[
            (SYNC_MODE_SAFE, 'Safe (skip customised instances)'),
            (SYNC_MODE_FORCE, 'Force (reset customised instances)'),
        ],
        required=False,
    )


class AnswerSubmissionForm(forms.Form):
    """Envelope of an answer submission; entries are validated by the service."""

    instance = forms.CharField(required=False, max_length=64)
    answers = forms.JSONField(required=False)

    def clean_answers(self):
        answers = self.cleaned_data.get('answers')
        if answers is None:
            return []
        if not isinstance(answers, list):
            raise forms.ValidationError('Answers must be a list.')
        return answers
