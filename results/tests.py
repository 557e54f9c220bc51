from unittest.mock import patch

from django.conf import settings
from django.contrib.auth.models import User
from django.db import DatabaseError
from django.db.models.query import QuerySet
from django.test import TestCase, Client

from quiz.exceptions import InvalidInput, NotFound, PersistenceFailure
from quiz.models import Quiz, Question, ParticipantField
from results.models import QuizResult, ParticipantAnswer
from results.recorder import attempt_unit_of_work, delete_attempt, record_attempt

PARTICIPANT = {"name": "Ann", "email": "ann@example.com"}


def create_quiz(user, title):
    quiz = Quiz.objects.create(title=title, user=user)
    questions = [
        Question.objects.create(quiz=quiz, question_number=1, question_type="multiple-choice",
                                question_text="Capital of France?", options=["Paris", "Lyon"],
                                correct_answer="Paris"),
        Question.objects.create(quiz=quiz, question_number=2, question_type="true-false",
                                question_text="Rome is in Italy", options=["True", "False"], correct_answer="True"),
        Question.objects.create(quiz=quiz, question_number=3, question_type="short-answer",
                                question_text="Capital of Spain?", options=[], correct_answer="Madrid"),
    ]
    ParticipantField.objects.create(quiz=quiz, field_number=1, label="Name", required=True)
    ParticipantField.objects.create(quiz=quiz, field_number=2, label="Email", field_type="email", required=True)
    return quiz, questions


def answers_for(questions, values=("Paris", "True", "Madrid")):
    return [
        {"questionId": question.pk, "participantAnswer": value}
        for question, value in zip(questions, values)
    ]


class RecorderTestCase(TestCase):

    @classmethod
    def setUpTestData(cls):
        cls.test_user = User.objects.create_user(username='testuser', password='password')
        cls.test_quiz, cls.questions = create_quiz(cls.test_user, "Capitals")
        cls.other_quiz, cls.other_questions = create_quiz(cls.test_user, "Other capitals")

    def test_record_attempt_stores_result_and_answers(self):
        recorded = record_attempt(RecorderTestCase.test_quiz.pk, PARTICIPANT, answers_for(self.questions),
                                  client_score=100)

        self.assertEqual(recorded.answers_stored, 3)
        self.assertEqual(recorded.score, 100)
        self.assertFalse(recorded.replayed)
        self.assertEqual(QuizResult.objects.count(), 1)
        self.assertEqual(ParticipantAnswer.objects.count(), 3)

        quiz_result = QuizResult.objects.get(pk=recorded.quiz_result_id)
        self.assertEqual(quiz_result.participant_email, "ann@example.com")
        self.assertEqual(quiz_result.client_score, 100)

    def test_record_attempt_with_partial_answers(self):
        recorded = record_attempt(RecorderTestCase.test_quiz.pk, PARTICIPANT, answers_for(self.questions[:1]))
        self.assertEqual(recorded.answers_stored, 1)
        # unanswered questions count as wrong
        self.assertEqual(recorded.score, 33)

    def test_foreign_question_stores_nothing(self):
        answers = answers_for(self.questions) + answers_for(self.other_questions[:1])
        with self.assertRaises(InvalidInput):
            record_attempt(RecorderTestCase.test_quiz.pk, PARTICIPANT, answers)

        self.assertEqual(QuizResult.objects.count(), 0)
        self.assertEqual(ParticipantAnswer.objects.count(), 0)

    def test_unknown_quiz(self):
        with self.assertRaises(NotFound):
            record_attempt(999999, PARTICIPANT, answers_for(self.questions))

    def test_missing_participant_fields(self):
        with self.assertRaises(InvalidInput):
            record_attempt(RecorderTestCase.test_quiz.pk, {"name": "Ann"}, answers_for(self.questions))
        with self.assertRaises(InvalidInput):
            record_attempt(RecorderTestCase.test_quiz.pk, {"name": " ", "email": "ann@example.com"},
                           answers_for(self.questions))

    def test_answers_must_be_a_list(self):
        for answers in (None, [], "Paris", {"questionId": 1}):
            with self.assertRaises(InvalidInput):
                record_attempt(RecorderTestCase.test_quiz.pk, PARTICIPANT, answers)

    def test_malformed_answer(self):
        with self.assertRaises(InvalidInput) as cm:
            record_attempt(RecorderTestCase.test_quiz.pk, PARTICIPANT, [{"questionId": "first"}])
        self.assertEqual(cm.exception.message, "Invalid answer data at index 0")

    def test_out_of_range_client_score_is_dropped(self):
        recorded = record_attempt(RecorderTestCase.test_quiz.pk, PARTICIPANT, answers_for(self.questions),
                                  client_score=250)
        self.assertIsNone(QuizResult.objects.get(pk=recorded.quiz_result_id).client_score)

    def test_identical_submissions_are_separate_attempts(self):
        first = record_attempt(RecorderTestCase.test_quiz.pk, PARTICIPANT, answers_for(self.questions))
        second = record_attempt(RecorderTestCase.test_quiz.pk, PARTICIPANT, answers_for(self.questions))
        self.assertNotEqual(first.quiz_result_id, second.quiz_result_id)
        self.assertEqual(QuizResult.objects.count(), 2)
        self.assertEqual(ParticipantAnswer.objects.count(), 6)

    def test_submission_token_replays(self):
        first = record_attempt(RecorderTestCase.test_quiz.pk, PARTICIPANT, answers_for(self.questions),
                               submission_token="abc123")
        second = record_attempt(RecorderTestCase.test_quiz.pk, PARTICIPANT, answers_for(self.questions),
                                submission_token="abc123")
        self.assertTrue(second.replayed)
        self.assertEqual(first.quiz_result_id, second.quiz_result_id)
        self.assertEqual(second.answers_stored, 3)
        self.assertEqual(QuizResult.objects.count(), 1)

    def test_same_token_on_another_quiz(self):
        record_attempt(RecorderTestCase.test_quiz.pk, PARTICIPANT, answers_for(self.questions),
                       submission_token="abc123")
        recorded = record_attempt(RecorderTestCase.other_quiz.pk, PARTICIPANT, answers_for(self.other_questions),
                                  submission_token="abc123")
        self.assertFalse(recorded.replayed)
        self.assertEqual(QuizResult.objects.count(), 2)

    def test_duplicate_question_rolls_back(self):
        answers = answers_for(self.questions) + answers_for(self.questions[:1])
        with self.assertRaises(PersistenceFailure):
            record_attempt(RecorderTestCase.test_quiz.pk, PARTICIPANT, answers)

        self.assertEqual(QuizResult.objects.count(), 0)
        self.assertEqual(ParticipantAnswer.objects.count(), 0)

    def test_partial_insert_rolls_back(self):
        original_bulk_create = QuerySet.bulk_create

        def insert_first_only(queryset, objs, *args, **kwargs):
            return original_bulk_create(queryset, objs[:1], *args, **kwargs)

        with patch.object(QuerySet, "bulk_create", insert_first_only):
            with self.assertRaises(PersistenceFailure) as cm:
                record_attempt(RecorderTestCase.test_quiz.pk, PARTICIPANT, answers_for(self.questions))

        self.assertEqual(cm.exception.message, "Not all answers were inserted successfully")
        self.assertEqual(QuizResult.objects.count(), 0)
        self.assertEqual(ParticipantAnswer.objects.count(), 0)

    def test_database_error_becomes_persistence_failure(self):
        with patch.object(QuizResult, "save", side_effect=DatabaseError("disk full")):
            with self.assertRaises(PersistenceFailure) as cm:
                record_attempt(RecorderTestCase.test_quiz.pk, PARTICIPANT, answers_for(self.questions))

        self.assertEqual(cm.exception.message, "Failed to store quiz results")
        self.assertEqual(QuizResult.objects.count(), 0)

    def test_unit_of_work_uses_attempts_database_and_rolls_back(self):
        with self.assertRaises(RuntimeError):
            with attempt_unit_of_work() as alias:
                self.assertEqual(alias, settings.ATTEMPTS_DATABASE)
                QuizResult.objects.using(alias).create(quiz=RecorderTestCase.test_quiz, participant_name="Ann",
                                                       participant_email="ann@example.com", score=0)
                raise RuntimeError("stop")

        self.assertEqual(QuizResult.objects.count(), 0)

    def test_delete_attempt_removes_answers(self):
        recorded = record_attempt(RecorderTestCase.test_quiz.pk, PARTICIPANT, answers_for(self.questions))
        self.assertEqual(QuizResult.objects.count(), 1)
        self.assertEqual(ParticipantAnswer.objects.count(), 3)

        deleted = delete_attempt(recorded.quiz_result_id)
        self.assertEqual(deleted, 3)
        self.assertEqual(QuizResult.objects.count(), 0)
        self.assertEqual(ParticipantAnswer.objects.count(), 0)

    def test_delete_missing_attempt(self):
        with self.assertRaises(NotFound):
            delete_attempt(999999)

    def test_delete_attempt_of_another_owner(self):
        other_user = User.objects.create_user(username='otheruser', password='password')
        recorded = record_attempt(RecorderTestCase.test_quiz.pk, PARTICIPANT, answers_for(self.questions))
        with self.assertRaises(NotFound):
            delete_attempt(recorded.quiz_result_id, owner=other_user)
        self.assertEqual(QuizResult.objects.count(), 1)


class ResultsViewTestCase(TestCase):

    @classmethod
    def setUpTestData(cls):
        cls.test_user = User.objects.create_user(username='testuser', password='password')
        cls.random_user = User.objects.create_user(username='randomuser', password='random')
        cls.test_quiz, cls.questions = create_quiz(cls.test_user, "Capitals")
        cls.random_quiz, cls.random_questions = create_quiz(cls.random_user, "Someone else's quiz")

        cls.first_result = QuizResult.objects.get(
            pk=record_attempt(cls.test_quiz.pk, PARTICIPANT, answers_for(cls.questions)).quiz_result_id)
        cls.second_result = QuizResult.objects.get(
            pk=record_attempt(cls.test_quiz.pk, {"name": "Bob", "email": "bob@example.com"},
                              answers_for(cls.questions, ("Lyon", "True", "madrid"))).quiz_result_id)
        cls.random_result = QuizResult.objects.get(
            pk=record_attempt(cls.random_quiz.pk, PARTICIPANT, answers_for(cls.random_questions)).quiz_result_id)

    def setUp(self):
        self.authenticated_client = Client()
        self.authenticated_client.login(username='testuser', password='password')
        self.unauthenticated_client = Client()

    def test_results_index_lists_own_results_newest_first(self):
        response = self.authenticated_client.get('/results/')
        self.assertEqual(response.status_code, 200)
        results = list(response.context['results'])
        self.assertEqual(results, [ResultsViewTestCase.second_result, ResultsViewTestCase.first_result])

    def test_results_index_filtered_by_quiz(self):
        response = self.authenticated_client.get(f'/results/?quiz={ResultsViewTestCase.random_quiz.pk}')
        self.assertEqual(len(response.context['results']), 0)

    def test_results_index_unauthenticated(self):
        response = self.unauthenticated_client.get('/results/')
        self.assertEqual(response.status_code, 302)

    def test_participant_answers(self):
        response = self.authenticated_client.get(f'/results/{ResultsViewTestCase.second_result.pk}/answers')
        self.assertEqual(response.status_code, 200)
        rows = response.context['answer_data']
        self.assertEqual([row['participant_answer'] for row in rows], ["Lyon", "True", "madrid"])
        self.assertEqual([row['correct'] for row in rows], [False, True, False])
        self.assertEqual(rows[0]['question'].correct_answer, "Paris")

    def test_participant_answers_other_owner(self):
        response = self.authenticated_client.get(f'/results/{ResultsViewTestCase.random_result.pk}/answers')
        self.assertEqual(response.status_code, 403)

    def test_participant_answers_missing(self):
        response = self.authenticated_client.get('/results/999999/answers')
        self.assertEqual(response.status_code, 404)

    def test_delete_confirm_page(self):
        response = self.authenticated_client.get(f'/results/delete/{ResultsViewTestCase.first_result.pk}')
        self.assertEqual(response.status_code, 200)
        self.assertTemplateUsed(response, "results/confirm_result_delete.html")

    def test_delete_result(self):
        result_id = ResultsViewTestCase.first_result.pk
        response = self.authenticated_client.post(f'/results/delete/{result_id}')
        self.assertRedirects(response, '/results/')
        self.assertFalse(QuizResult.objects.filter(pk=result_id).exists())
        self.assertFalse(ParticipantAnswer.objects.filter(quiz_result_id=result_id).exists())

    def test_delete_result_with_delete_method(self):
        result_id = ResultsViewTestCase.second_result.pk
        response = self.authenticated_client.delete(f'/results/delete/{result_id}')
        self.assertEqual(response.status_code, 302)
        self.assertFalse(QuizResult.objects.filter(pk=result_id).exists())

    def test_delete_result_other_owner(self):
        response = self.authenticated_client.post(f'/results/delete/{ResultsViewTestCase.random_result.pk}')
        self.assertEqual(response.status_code, 404)
        self.assertTrue(QuizResult.objects.filter(pk=ResultsViewTestCase.random_result.pk).exists())

    def test_delete_missing_result(self):
        response = self.authenticated_client.post('/results/delete/999999')
        self.assertEqual(response.status_code, 404)

    def test_delete_result_unauthenticated(self):
        response = self.unauthenticated_client.post(f'/results/delete/{ResultsViewTestCase.first_result.pk}')
        self.assertEqual(response.status_code, 404)

    @patch("results.views.delete_attempt", side_effect=PersistenceFailure("Failed to delete quiz result"))
    def test_delete_result_failure(self, delete_pch):
        result_id = ResultsViewTestCase.first_result.pk
        response = self.authenticated_client.post(f'/results/delete/{result_id}')
        self.assertRedirects(response, '/results/')
        self.assertTrue(QuizResult.objects.filter(pk=result_id).exists())

    def test_dashboard(self):
        response = self.authenticated_client.get('/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.context['quiz_count'], 1)
        self.assertEqual(response.context['result_count'], 2)
        # 100% and 33%
        self.assertEqual(response.context['average_score'], 67)

    def test_dashboard_unauthenticated(self):
        response = self.unauthenticated_client.get('/')
        self.assertEqual(response.status_code, 302)
