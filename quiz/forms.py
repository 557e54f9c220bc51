import json

from django import forms

from quiz.exceptions import InvalidInput
from quiz.schemas import QuizDraft, parse_or_invalid


class QuizForm(forms.Form):
    # the whole quiz (title, settings, questions, participant fields) as built by the editor
    whole_quiz = forms.CharField(label="Quiz", widget=forms.Textarea)

    def clean_whole_quiz(self):
        try:
            data = json.loads(self.cleaned_data['whole_quiz'])
        except json.JSONDecodeError:
            raise forms.ValidationError("Invalid JSON")

        try:
            return parse_or_invalid(QuizDraft, data)
        except InvalidInput as e:
            raise forms.ValidationError(e.message)
