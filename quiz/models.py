from django.db import models
from django.contrib.auth.models import User

MULTIPLE_CHOICE = "multiple-choice"
TRUE_FALSE = "true-false"
SHORT_ANSWER = "short-answer"

QUESTION_TYPE_CHOICES = [
    (MULTIPLE_CHOICE, "Multiple choice"),
    (TRUE_FALSE, "True / False"),
    (SHORT_ANSWER, "Short answer"),
]

FIELD_TYPE_CHOICES = [
    ("text", "Text"),
    ("email", "Email"),
]


class Quiz(models.Model):
    title = models.CharField(max_length=128)
    description = models.TextField(blank=True, default="")
    user = models.ForeignKey(User, on_delete=models.CASCADE)
    allow_retake = models.BooleanField(default=False)
    # minutes
    time_limit = models.PositiveIntegerField(null=True, blank=True)
    start_date = models.DateTimeField(null=True, blank=True)
    end_date = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(fields=['user', 'title'], name='unique_quiz_title_per_user')
        ]

    def __str__(self):
        return self.title


class Question(models.Model):
    quiz = models.ForeignKey(Quiz, on_delete=models.CASCADE, related_name="questions")
    question_number = models.IntegerField(default=0)
    question_type = models.CharField(max_length=20, choices=QUESTION_TYPE_CHOICES, default=MULTIPLE_CHOICE)
    question_text = models.TextField()
    options = models.JSONField(default=list, blank=True)
    correct_answer = models.TextField()

    class Meta:
        ordering = ["question_number", "id"]

    def __str__(self):
        return self.question_text


class ParticipantField(models.Model):
    quiz = models.ForeignKey(Quiz, on_delete=models.CASCADE, related_name="participant_fields")
    field_number = models.IntegerField(default=0)
    label = models.CharField(max_length=128)
    field_type = models.CharField(max_length=10, choices=FIELD_TYPE_CHOICES, default="text")
    required = models.BooleanField(default=False)

    class Meta:
        ordering = ["field_number", "id"]

    @property
    def key(self):
        # participant values are keyed by the lower cased label, e.g. "Name" -> "name"
        return self.label.strip().lower()

    def __str__(self):
        return self.label
