from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import Q

from quiz.models import Quiz, Question


class QuizResult(models.Model):
    quiz = models.ForeignKey(Quiz, on_delete=models.CASCADE, related_name="results")
    participant_name = models.CharField(max_length=255)
    participant_email = models.EmailField(max_length=254)
    # every participant field value keyed by field, name and email included
    participant_info = models.JSONField(default=dict, blank=True)
    score = models.IntegerField(default=0, validators=[MinValueValidator(0), MaxValueValidator(100)])
    client_score = models.IntegerField(null=True, blank=True)
    submission_token = models.CharField(max_length=64, null=True, blank=True)
    submitted_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-submitted_at", "-id"]
        constraints = [
            models.UniqueConstraint(fields=['quiz', 'submission_token'], condition=Q(submission_token__isnull=False),
                                    name='unique_submission_token_per_quiz')
        ]

    def __str__(self):
        return f"{self.participant_name} - {self.quiz.title} ({self.score}%)"


class ParticipantAnswer(models.Model):
    quiz_result = models.ForeignKey(QuizResult, on_delete=models.CASCADE, related_name="answers")
    question = models.ForeignKey(Question, on_delete=models.CASCADE)
    participant_answer = models.TextField(blank=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['quiz_result', 'question'], name='unique_answer_per_question')
        ]

    @property
    def is_correct(self):
        return self.participant_answer == self.question.correct_answer
