import logging

from django.db import transaction

from quiz.exceptions import NotFound
from quiz.models import Quiz, Question, ParticipantField
from quiz.schemas import QuizDefinition, QuizSettings, QuestionDefinition, ParticipantFieldDefinition

logger = logging.getLogger("quiz_maker")


def build_quiz_definition(quiz: Quiz) -> QuizDefinition:
    settings = QuizSettings(
        allow_retake=quiz.allow_retake,
        time_limit=quiz.time_limit,
        start_date=quiz.start_date,
        end_date=quiz.end_date,
    )

    questions = [
        QuestionDefinition(
            id=question.pk,
            question_type=question.question_type,
            question_text=question.question_text,
            options=question.options,
            correct_answer=question.correct_answer,
        )
        for question in quiz.questions.all()
    ]

    participant_fields = [
        ParticipantFieldDefinition(
            id=field.pk,
            label=field.label,
            field_type=field.field_type,
            required=field.required,
        )
        for field in quiz.participant_fields.all()
    ]

    return QuizDefinition(
        id=quiz.pk,
        title=quiz.title,
        description=quiz.description,
        settings=settings,
        questions=questions,
        participant_fields=participant_fields,
    )


def get_quiz_definition(quiz_id) -> QuizDefinition:
    """Load the read-only definition of a quiz for taking it."""
    try:
        quiz = Quiz.objects.prefetch_related("questions", "participant_fields").get(pk=quiz_id)
    except (Quiz.DoesNotExist, ValueError, TypeError):
        raise NotFound(f"Quiz with ID {quiz_id} not found")

    return build_quiz_definition(quiz)


def save_quiz_draft(draft, user, quiz=None) -> Quiz:
    """
    Create a quiz from a validated QuizDraft, or replace an existing quiz's content.

    Questions and participant fields are rewritten as a whole, so answers
    recorded against removed questions go with them.
    """
    with transaction.atomic():
        if quiz is None:
            quiz = Quiz(user=user)

        quiz.title = draft.title
        quiz.description = draft.description
        quiz.allow_retake = draft.settings.allow_retake
        quiz.time_limit = draft.settings.time_limit
        quiz.start_date = draft.settings.start_date
        quiz.end_date = draft.settings.end_date
        quiz.save()

        kept_question_ids = []
        for number, question_draft in enumerate(draft.questions, start=1):
            question = None
            if question_draft.id is not None:
                question = Question.objects.filter(pk=question_draft.id, quiz=quiz).first()
            if question is None:
                question = Question(quiz=quiz)

            question.question_number = number
            question.question_type = question_draft.question_type
            question.question_text = question_draft.question_text
            question.options = question_draft.options
            question.correct_answer = question_draft.correct_answer
            question.save()
            kept_question_ids.append(question.pk)

        Question.objects.filter(quiz=quiz).exclude(pk__in=kept_question_ids).delete()

        ParticipantField.objects.filter(quiz=quiz).delete()
        ParticipantField.objects.bulk_create([
            ParticipantField(
                quiz=quiz,
                field_number=number,
                label=field.label.strip(),
                field_type=field.field_type,
                required=field.required,
            )
            for number, field in enumerate(draft.participant_fields, start=1)
        ])

    logger.info(f"Saved quiz {quiz.pk} with {len(kept_question_ids)} questions")
    return quiz
