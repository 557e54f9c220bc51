"""
Stores a finished attempt: one QuizResult row and one ParticipantAnswer row
per answered question, written together or not at all.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass

from django.conf import settings
from django.db import DatabaseError, transaction
from pydantic import ValidationError

from quiz.exceptions import InvalidInput, NotFound, PersistenceFailure, QuizMakerError
from quiz.models import Quiz, Question
from quiz.schemas import SubmittedAnswer
from quiz.scoring import score_answers
from results.models import QuizResult, ParticipantAnswer

logger = logging.getLogger("quiz_maker")


@dataclass(frozen=True)
class RecordedAttempt:
    quiz_result_id: int
    answers_stored: int
    score: int
    # True when the submission token matched an attempt already stored
    replayed: bool = False

    def to_dict(self):
        return {
            "quizResultId": self.quiz_result_id,
            "answersStored": self.answers_stored,
            "score": self.score,
        }


@contextmanager
def attempt_unit_of_work(using=None):
    """
    One transaction on the attempts database.

    Everything written inside the block is committed when it exits normally
    and rolled back when anything is raised. Yields the database alias the
    block must write through.
    """
    alias = using or settings.ATTEMPTS_DATABASE
    try:
        with transaction.atomic(using=alias):
            yield alias
    except Exception:
        logger.warning(f"Rolled back attempt transaction on '{alias}'")
        raise


def _coerce_answers(answers):
    if answers is None or isinstance(answers, (str, bytes, dict)):
        raise InvalidInput("Answers array is required and must not be empty")

    coerced = []
    for index, answer in enumerate(answers):
        if isinstance(answer, SubmittedAnswer):
            coerced.append(answer)
            continue
        try:
            coerced.append(SubmittedAnswer.model_validate(answer))
        except ValidationError:
            raise InvalidInput(f"Invalid answer data at index {index}")

    if not coerced:
        raise InvalidInput("Answers array is required and must not be empty")
    return coerced


def _valid_client_score(client_score):
    if client_score is None:
        return None
    if isinstance(client_score, bool) or not isinstance(client_score, int) or not 0 <= client_score <= 100:
        logger.warning(f"Ignoring out of range client score {client_score!r}")
        return None
    return client_score


def record_attempt(quiz_id, participant_info, answers, client_score=None, submission_token=None,
                   using=None) -> RecordedAttempt:
    """
    Persist one attempt atomically.

    ``participant_info`` maps field keys to values and must hold ``name`` and
    ``email``. Each answer must reference a question of this quiz. The score
    is recomputed from the stored correct answers; ``client_score`` is kept
    for comparison only.

    Raises NotFound for an unknown quiz, InvalidInput for bad payloads and
    PersistenceFailure when the database write fails. Nothing is left behind
    in any of those cases.
    """
    answers = _coerce_answers(answers)
    participant_info = {
        str(key).strip().lower(): "" if value is None else str(value)
        for key, value in (participant_info or {}).items()
    }
    name = participant_info.get("name", "").strip()
    email = participant_info.get("email", "").strip()
    if not name or not email:
        raise InvalidInput("Missing required fields")

    client_score = _valid_client_score(client_score)

    try:
        with attempt_unit_of_work(using) as alias:
            try:
                quiz = Quiz.objects.using(alias).get(pk=quiz_id)
            except (Quiz.DoesNotExist, ValueError, TypeError):
                raise NotFound(f"Quiz with ID {quiz_id} not found")

            if submission_token:
                existing = QuizResult.objects.using(alias).filter(
                    quiz=quiz, submission_token=submission_token).first()
                if existing is not None:
                    logger.info(f"Submission {submission_token} already stored as result {existing.pk}")
                    return RecordedAttempt(
                        quiz_result_id=existing.pk,
                        answers_stored=existing.answers.using(alias).count(),
                        score=existing.score,
                        replayed=True,
                    )

            questions = {question.pk: question for question in Question.objects.using(alias).filter(quiz=quiz)}
            for answer in answers:
                if answer.question_id not in questions:
                    raise InvalidInput(
                        f"Question {answer.question_id} not found or doesn't belong to quiz {quiz_id}")

            submitted = {answer.question_id: answer.participant_answer for answer in answers}
            score = score_answers(questions.values(), submitted)
            if client_score is not None and client_score != score.percentage:
                logger.warning(
                    f"Client score {client_score} differs from computed score {score.percentage} on quiz {quiz_id}")

            quiz_result = QuizResult(
                quiz=quiz,
                participant_name=name,
                participant_email=email,
                participant_info=participant_info,
                score=score.percentage,
                client_score=client_score,
                submission_token=submission_token or None,
            )
            quiz_result.save(using=alias)

            ParticipantAnswer.objects.using(alias).bulk_create([
                ParticipantAnswer(
                    quiz_result=quiz_result,
                    question=questions[answer.question_id],
                    participant_answer=answer.participant_answer,
                )
                for answer in answers
            ])

            answers_stored = ParticipantAnswer.objects.using(alias).filter(quiz_result=quiz_result).count()
            if answers_stored != len(answers):
                raise PersistenceFailure("Not all answers were inserted successfully")

    except QuizMakerError:
        raise
    except DatabaseError as e:
        logger.error(f"Failed to store attempt on quiz {quiz_id}: {e}")
        raise PersistenceFailure() from e

    logger.info(f"Stored result {quiz_result.pk} for quiz {quiz_id} with {answers_stored} answers")
    return RecordedAttempt(quiz_result_id=quiz_result.pk, answers_stored=answers_stored, score=score.percentage)


def delete_attempt(result_id, owner=None, using=None) -> int:
    """
    Delete a stored attempt and its answers together.

    When ``owner`` is given only results of that user's quizzes can be
    deleted. Returns the number of answer rows removed.
    """
    try:
        with attempt_unit_of_work(using) as alias:
            results = QuizResult.objects.using(alias).filter(pk=result_id)
            if owner is not None:
                results = results.filter(quiz__user=owner)

            quiz_result = results.first()
            if quiz_result is None:
                raise NotFound("Quiz result not found")

            answers_deleted, _ = ParticipantAnswer.objects.using(alias).filter(quiz_result=quiz_result).delete()
            quiz_result.delete(using=alias)

    except QuizMakerError:
        raise
    except DatabaseError as e:
        logger.error(f"Failed to delete result {result_id}: {e}")
        raise PersistenceFailure("Failed to delete quiz result") from e

    logger.info(f"Deleted result {result_id} and {answers_deleted} answers")
    return answers_deleted
