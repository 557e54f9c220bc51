import json
from datetime import datetime, timedelta, timezone as dt_timezone

from django.contrib.auth.models import User
from django.test import SimpleTestCase, TestCase, Client
from django.utils import timezone

from quiz.attempt_session import (AttemptSession, AttemptState, SubmitRequested, Tick, transition,
                                  ANSWERING, COLLECTING_INFO, COMPLETED, EXPIRED, NOT_STARTED, SUBMITTING,
                                  UNAVAILABLE, MANUAL, TIMEOUT, missing_required_fields)
from quiz.availability import check_availability, NOT_STARTED as WINDOW_NOT_STARTED, ENDED
from quiz.definitions import get_quiz_definition, save_quiz_draft
from quiz.exceptions import InvalidInput, NotFound, PersistenceFailure
from quiz.models import Quiz, Question, ParticipantField
from quiz.schemas import (ParticipantFieldDefinition, QuestionDefinition, QuizDefinition, QuizDraft, QuizSettings,
                          default_participant_fields, parse_or_invalid)
from quiz.scoring import percentage_of, score_answers
from results.models import QuizResult, ParticipantAnswer
from results.recorder import RecordedAttempt, record_attempt


def make_definition(time_limit=None, allow_retake=False, start_date=None, end_date=None):
    return QuizDefinition(
        id=7,
        title="Capitals",
        settings=QuizSettings(time_limit=time_limit, allow_retake=allow_retake,
                              start_date=start_date, end_date=end_date),
        questions=[
            QuestionDefinition(id=1, question_type="true-false", question_text="Paris is in France",
                               correct_answer="True"),
            QuestionDefinition(id=2, question_type="short-answer", question_text="Capital of Italy?",
                               correct_answer="Rome"),
        ],
        participant_fields=default_participant_fields(),
    )


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


class RecordingPersist:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def __call__(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return RecordedAttempt(quiz_result_id=99, answers_stored=len(kwargs["answers"]), score=kwargs["client_score"])


def create_quiz_with_questions(user, title="Capitals quiz", **quiz_fields):
    quiz = Quiz.objects.create(title=title, user=user, **quiz_fields)
    questions = [
        Question.objects.create(quiz=quiz, question_number=1, question_type="multiple-choice",
                                question_text="Capital of France?", options=["London", "Paris", "Berlin"],
                                correct_answer="Paris"),
        Question.objects.create(quiz=quiz, question_number=2, question_type="true-false",
                                question_text="Rome is in Italy", options=["True", "False"], correct_answer="True"),
        Question.objects.create(quiz=quiz, question_number=3, question_type="short-answer",
                                question_text="Capital of Italy?", options=[], correct_answer="Rome"),
    ]
    ParticipantField.objects.create(quiz=quiz, field_number=1, label="Name", field_type="text", required=True)
    ParticipantField.objects.create(quiz=quiz, field_number=2, label="Email", field_type="email", required=True)
    ParticipantField.objects.create(quiz=quiz, field_number=3, label="Company", field_type="text", required=False)
    return quiz, questions


def draft_payload(title="Geography", questions=None, **settings):
    return {
        "title": title,
        "description": "A short geography quiz",
        "settings": settings,
        "questions": questions if questions is not None else [
            {"type": "multiple-choice", "questionText": "Capital of France?",
             "options": [{"id": "a", "text": "Paris"}, {"id": "b", "text": "Lyon"}],
             "correctAnswer": {"id": "a", "text": "Paris"}},
            {"type": "true-false", "questionText": "The Nile is in Africa", "correctAnswer": "True"},
        ],
        "participantFields": [
            {"label": "Name", "type": "text", "required": True},
            {"label": "Email", "type": "email", "required": True},
            {"label": "Team", "type": "text", "required": False},
        ],
    }


class ScoringTestCase(SimpleTestCase):

    def setUp(self):
        self.true_false = [QuestionDefinition(id=1, question_type="true-false", question_text="Sky is blue",
                                              correct_answer="True")]

    def test_true_false_answered_correctly(self):
        result = score_answers(self.true_false, {1: "True"})
        self.assertEqual(result.percentage, 100)
        self.assertEqual(result.correct_count, 1)
        self.assertEqual(result.breakdown, {1: True})

    def test_no_answers_scores_zero(self):
        result = score_answers(self.true_false, {})
        self.assertEqual(result.percentage, 0)
        self.assertEqual(result.correct_count, 0)
        self.assertEqual(result.total, 1)

    def test_no_questions_scores_zero(self):
        result = score_answers([], {1: "True"})
        self.assertEqual(result.percentage, 0)
        self.assertEqual(result.total, 0)

    def test_comparison_is_exact(self):
        questions = make_definition().questions
        result = score_answers(questions, {1: "True", 2: "rome"})
        self.assertEqual(result.correct_count, 1)
        self.assertEqual(result.percentage, 50)

        result = score_answers(questions, {1: "True", 2: " Rome"})
        self.assertEqual(result.correct_count, 1)

    def test_answers_for_other_questions_are_ignored(self):
        result = score_answers(self.true_false, {1: "True", 42: "True"})
        self.assertEqual(result.total, 1)
        self.assertEqual(result.correct_count, 1)

    def test_percentage_rounds_half_up(self):
        self.assertEqual(percentage_of(2, 3), 67)
        self.assertEqual(percentage_of(1, 3), 33)
        self.assertEqual(percentage_of(1, 8), 13)
        self.assertEqual(percentage_of(0, 0), 0)

    def test_percentage_stays_in_range(self):
        for total in range(1, 12):
            for correct in range(total + 1):
                percentage = percentage_of(correct, total)
                self.assertTrue(0 <= percentage <= 100)


class AvailabilityTestCase(SimpleTestCase):

    def setUp(self):
        self.now = datetime(2025, 6, 1, 12, 0, tzinfo=dt_timezone.utc)

    def test_no_bounds_is_available(self):
        availability = check_availability(QuizSettings(), self.now)
        self.assertTrue(availability.available)
        self.assertIsNone(availability.reason)

    def test_future_start_is_not_started(self):
        settings = QuizSettings(start_date=datetime(2099, 1, 1, tzinfo=dt_timezone.utc))
        availability = check_availability(settings, self.now)
        self.assertFalse(availability.available)
        self.assertEqual(availability.reason, WINDOW_NOT_STARTED)

    def test_past_end_is_ended(self):
        settings = QuizSettings(end_date=self.now - timedelta(seconds=1))
        availability = check_availability(settings, self.now)
        self.assertEqual(availability.reason, ENDED)

    def test_bounds_are_inclusive(self):
        settings = QuizSettings(start_date=self.now, end_date=self.now)
        self.assertTrue(check_availability(settings, self.now).available)

    def test_naive_dates_are_utc(self):
        settings = QuizSettings(start_date=datetime(2025, 6, 1, 13, 0))
        self.assertEqual(check_availability(settings, self.now).reason, WINDOW_NOT_STARTED)


class SchemaTestCase(SimpleTestCase):

    def test_option_objects_are_normalised_to_text(self):
        question = QuestionDefinition.model_validate({
            "id": 3, "type": "multiple-choice", "questionText": "Capital of France?",
            "options": [{"id": "a", "text": "Paris"}, "Lyon"],
            "correctAnswer": {"id": "a", "text": "Paris"},
        })
        self.assertEqual(question.options, ["Paris", "Lyon"])
        self.assertEqual(question.correct_answer, "Paris")

    def test_true_false_gets_default_options(self):
        question = QuestionDefinition.model_validate(
            {"type": "true-false", "questionText": "Water is wet", "correctAnswer": "True"})
        self.assertEqual(question.options, ["True", "False"])

    def test_short_answer_has_no_options(self):
        question = QuestionDefinition.model_validate(
            {"type": "short-answer", "questionText": "Capital?", "options": ["x"], "correctAnswer": "Rome"})
        self.assertEqual(question.options, [])

    def test_draft_is_valid(self):
        draft = parse_or_invalid(QuizDraft, draft_payload(timeLimit=5))
        self.assertEqual(draft.settings.time_limit, 5)
        self.assertEqual(len(draft.questions), 2)
        self.assertEqual([field.key for field in draft.participant_fields], ["name", "email", "team"])

    def test_zero_time_limit_means_no_limit(self):
        draft = parse_or_invalid(QuizDraft, draft_payload(timeLimit=0))
        self.assertIsNone(draft.settings.time_limit)

    def test_draft_rejects_correct_answer_outside_options(self):
        payload = draft_payload(questions=[
            {"type": "multiple-choice", "questionText": "Capital of France?", "options": ["Lyon", "Nice"],
             "correctAnswer": "Paris"},
        ])
        with self.assertRaises(InvalidInput):
            parse_or_invalid(QuizDraft, payload)

    def test_draft_rejects_single_option(self):
        payload = draft_payload(questions=[
            {"type": "multiple-choice", "questionText": "Pick one", "options": ["Only"], "correctAnswer": "Only"},
        ])
        with self.assertRaises(InvalidInput):
            parse_or_invalid(QuizDraft, payload)

    def test_draft_requires_name_and_email_fields(self):
        payload = draft_payload()
        payload["participantFields"] = [{"label": "Name", "type": "text", "required": True}]
        with self.assertRaises(InvalidInput) as cm:
            parse_or_invalid(QuizDraft, payload)
        self.assertIn("Name and Email", cm.exception.message)

    def test_draft_rejects_optional_name_or_email(self):
        payload = draft_payload()
        payload["participantFields"][1]["required"] = False
        with self.assertRaises(InvalidInput) as cm:
            parse_or_invalid(QuizDraft, payload)
        self.assertIn("must be required", cm.exception.message)

    def test_draft_rejects_repeated_question_id(self):
        question = {"id": 3, "type": "true-false", "questionText": "Rome is in Italy", "correctAnswer": "True"}
        payload = draft_payload(questions=[question, dict(question, questionText="Oslo is in Norway")])
        with self.assertRaises(InvalidInput) as cm:
            parse_or_invalid(QuizDraft, payload)
        self.assertIn("only appear once", cm.exception.message)

    def test_draft_rejects_duplicate_labels(self):
        payload = draft_payload()
        payload["participantFields"].append({"label": " team ", "type": "text", "required": False})
        with self.assertRaises(InvalidInput):
            parse_or_invalid(QuizDraft, payload)

    def test_draft_rejects_end_before_start(self):
        payload = draft_payload(startDate="2030-01-02T00:00:00Z", endDate="2030-01-01T00:00:00Z")
        with self.assertRaises(InvalidInput):
            parse_or_invalid(QuizDraft, payload)

    def test_parse_rejects_non_objects(self):
        with self.assertRaises(InvalidInput):
            parse_or_invalid(QuizDraft, ["not", "an", "object"])


class AttemptReducerTestCase(SimpleTestCase):

    def setUp(self):
        self.definition = make_definition(time_limit=1)
        self.now = datetime(2025, 6, 1, 12, 0, tzinfo=dt_timezone.utc)
        self.last_second = AttemptState(status=ANSWERING, participant_info={"name": "Ann", "email": "ann@example.com"},
                                        answers={1: "True", 2: "Rome"}, time_remaining=1)

    def test_tick_then_manual_submit_in_the_same_second(self):
        submitting = transition(self.last_second, Tick(), self.definition)
        self.assertEqual(submitting.status, SUBMITTING)
        self.assertEqual(submitting.trigger, TIMEOUT)

        after_submit = transition(submitting, SubmitRequested(now=self.now), self.definition)
        self.assertIs(after_submit, submitting)

    def test_manual_submit_then_tick_in_the_same_second(self):
        submitting = transition(self.last_second, SubmitRequested(now=self.now), self.definition)
        self.assertEqual(submitting.status, SUBMITTING)
        self.assertEqual(submitting.trigger, MANUAL)

        after_tick = transition(submitting, Tick(), self.definition)
        self.assertIs(after_tick, submitting)

    def test_events_that_do_not_apply_leave_state_unchanged(self):
        state = AttemptState()
        self.assertIs(transition(state, Tick(), self.definition), state)
        self.assertIs(transition(state, SubmitRequested(now=self.now), self.definition), state)

    def test_unknown_event_is_rejected(self):
        with self.assertRaises(TypeError):
            transition(AttemptState(), object(), self.definition)


class AttemptSessionTestCase(SimpleTestCase):

    def setUp(self):
        self.clock = FakeClock(datetime(2025, 6, 1, 12, 0, tzinfo=dt_timezone.utc))

    def make_session(self, definition, persist=None):
        persist = persist or RecordingPersist()
        session = AttemptSession(definition.id, lambda quiz_id: definition, persist, clock=self.clock)
        return session, persist

    def answering_session(self, definition, persist=None):
        session, persist = self.make_session(definition, persist)
        session.start()
        session.enter_participant_info({"Name": "Ann", "Email": "ann@example.com"})
        return session, persist

    def test_start_collects_participant_info(self):
        session, _ = self.make_session(make_definition())
        state = session.start()
        self.assertEqual(state.status, COLLECTING_INFO)
        self.assertEqual(state.participant_info, {"name": "", "email": ""})
        self.assertIsNotNone(state.attempt_key)

    def test_start_before_window_is_unavailable(self):
        session, _ = self.make_session(make_definition(start_date=datetime(2099, 1, 1, tzinfo=dt_timezone.utc)))
        state = session.start()
        self.assertEqual(state.status, UNAVAILABLE)
        self.assertEqual(state.reason, WINDOW_NOT_STARTED)

    def test_start_after_window_is_unavailable(self):
        session, _ = self.make_session(make_definition(end_date=self.clock.now - timedelta(days=1)))
        self.assertEqual(session.start().reason, ENDED)

    def test_start_for_missing_quiz_is_unavailable(self):
        def missing(quiz_id):
            raise NotFound(f"Quiz with ID {quiz_id} not found")

        session = AttemptSession(404, missing, RecordingPersist(), clock=self.clock)
        state = session.start()
        self.assertEqual(state.status, UNAVAILABLE)
        self.assertEqual(state.reason, "not-found")

    def test_required_fields_gate_answering(self):
        session, _ = self.make_session(make_definition(time_limit=2))
        session.start()

        state = session.enter_participant_info({"Name": "Ann"})
        self.assertEqual(state.status, COLLECTING_INFO)

        state = session.enter_participant_info({"email": "ann@example.com"})
        self.assertEqual(state.status, ANSWERING)
        self.assertEqual(state.participant_info, {"name": "Ann", "email": "ann@example.com"})
        self.assertEqual(state.time_remaining, 120)

    def test_blank_required_field_does_not_count(self):
        session, _ = self.make_session(make_definition())
        session.start()
        state = session.enter_participant_info({"Name": "   ", "Email": "ann@example.com"})
        self.assertEqual(state.status, COLLECTING_INFO)

    def test_name_and_email_gate_answering_even_when_stored_as_optional(self):
        definition = make_definition().model_copy(update={"participant_fields": [
            ParticipantFieldDefinition(label="Name", required=False),
            ParticipantFieldDefinition(label="Email", field_type="email", required=False),
        ]})
        self.assertEqual(missing_required_fields(definition, {}), ["name", "email"])

        session, persist = self.make_session(definition)
        session.start()
        state = session.enter_participant_info({})
        self.assertEqual(state.status, COLLECTING_INFO)

        state = session.enter_participant_info({"Name": "Ann", "Email": "ann@example.com"})
        self.assertEqual(state.status, ANSWERING)

    def test_answer_unknown_question(self):
        session, _ = self.answering_session(make_definition())
        with self.assertRaises(InvalidInput):
            session.answer(42, "True")

    def test_submit_with_unanswered_questions(self):
        session, persist = self.answering_session(make_definition())
        session.answer(1, "True")
        with self.assertRaises(InvalidInput):
            session.submit()
        self.assertEqual(session.status, ANSWERING)
        self.assertEqual(persist.calls, [])

    def test_manual_submit_scores_and_persists_once(self):
        session, persist = self.answering_session(make_definition())
        session.answer(1, "True")
        session.answer(2, "Paris")

        state = session.submit()
        self.assertEqual(state.status, COMPLETED)
        self.assertTrue(state.saved)
        self.assertEqual(state.attempt_id, 99)
        self.assertEqual(state.result.percentage, 50)
        self.assertEqual(state.trigger, MANUAL)

        self.assertEqual(len(persist.calls), 1)
        call = persist.calls[0]
        self.assertEqual(call["quiz_id"], 7)
        self.assertEqual(call["participant_info"], {"name": "Ann", "email": "ann@example.com"})
        self.assertEqual([answer.question_id for answer in call["answers"]], [1, 2])
        self.assertEqual(call["client_score"], 50)
        self.assertEqual(call["submission_token"], state.attempt_key)

        # submitting again does nothing
        session.submit()
        self.assertEqual(len(persist.calls), 1)
        self.assertEqual(session.transitions.count((ANSWERING, SUBMITTING)), 1)

    def test_persist_failure_still_completes(self):
        session, persist = self.answering_session(make_definition(), RecordingPersist(error=PersistenceFailure()))
        session.answer(1, "True")
        session.answer(2, "Rome")

        state = session.submit()
        self.assertEqual(state.status, COMPLETED)
        self.assertFalse(state.saved)
        self.assertEqual(state.persistence_error, "Failed to store quiz results")
        self.assertEqual(state.result.percentage, 100)

    def test_submit_after_window_closes_is_accepted(self):
        definition = make_definition(end_date=self.clock.now + timedelta(seconds=30))
        session, persist = self.answering_session(definition)
        session.answer(1, "True")
        session.answer(2, "Rome")

        self.clock.advance(60)
        state = session.submit()
        self.assertEqual(state.status, COMPLETED)
        self.assertTrue(state.window_closed)
        self.assertEqual(len(persist.calls), 1)

    def test_timer_expiry_submits_exactly_once(self):
        session, persist = self.answering_session(make_definition(time_limit=1))
        session.answer(1, "True")

        for _ in range(59):
            session.tick()
        self.assertEqual(session.status, ANSWERING)
        self.assertEqual(session.state.time_remaining, 1)

        state = session.tick()
        self.assertEqual(state.status, COMPLETED)
        self.assertEqual(state.trigger, TIMEOUT)
        self.assertEqual(state.time_remaining, 0)
        self.assertEqual(state.result.percentage, 50)

        # a manual submit arriving in the same second and further ticks are ignored
        session.submit()
        session.tick()
        self.assertEqual(len(persist.calls), 1)
        self.assertEqual(session.transitions.count((ANSWERING, SUBMITTING)), 1)

    def test_timer_expiry_without_answers_expires(self):
        session, persist = self.answering_session(make_definition(time_limit=1))
        for _ in range(60):
            session.tick()
        self.assertEqual(session.status, EXPIRED)
        self.assertEqual(persist.calls, [])

    def test_advance_clock_replays_elapsed_seconds(self):
        session, persist = self.answering_session(make_definition(time_limit=1))
        session.answer(1, "True")

        self.clock.advance(30)
        self.assertEqual(session.advance_clock().time_remaining, 30)

        self.clock.advance(45)
        state = session.advance_clock()
        self.assertEqual(state.status, COMPLETED)
        self.assertEqual(len(persist.calls), 1)

    def test_answer_after_time_is_up(self):
        session, persist = self.answering_session(make_definition(time_limit=1))
        session.answer(1, "True")
        self.clock.advance(61)
        with self.assertRaises(InvalidInput):
            session.answer(2, "Rome")
        self.assertEqual(session.status, COMPLETED)
        self.assertEqual(len(persist.calls), 1)

    def test_retake_when_allowed(self):
        session, persist = self.answering_session(make_definition(allow_retake=True))
        session.answer(1, "True")
        session.answer(2, "Rome")
        first_key = session.submit().attempt_key

        state = session.retake()
        self.assertEqual(state.status, COLLECTING_INFO)
        self.assertEqual(state.attempt_number, 2)
        self.assertEqual(state.answers, {})
        self.assertNotEqual(state.attempt_key, first_key)

    def test_retake_when_not_allowed(self):
        session, _ = self.answering_session(make_definition())
        session.answer(1, "True")
        session.answer(2, "Rome")
        session.submit()
        with self.assertRaises(InvalidInput):
            session.retake()

    def test_stored_session_carries_on(self):
        definition = make_definition(time_limit=1)
        session, persist = self.answering_session(definition)
        session.answer(1, "True")
        self.clock.advance(10)

        restored = AttemptSession.from_dict(session.to_dict(), lambda quiz_id: definition, persist, clock=self.clock)
        restored.answer(2, "Rome")
        self.assertEqual(restored.state.time_remaining, 50)

        state = restored.submit()
        self.assertEqual(state.status, COMPLETED)
        self.assertEqual(state.result.percentage, 100)


class QuizDefinitionTestCase(TestCase):

    @classmethod
    def setUpTestData(cls):
        cls.test_user = User.objects.create_user(username='testuser', password='password')
        cls.test_quiz, cls.questions = create_quiz_with_questions(cls.test_user, time_limit=10)

    def test_get_quiz_definition(self):
        definition = get_quiz_definition(QuizDefinitionTestCase.test_quiz.pk)
        self.assertEqual(definition.title, "Capitals quiz")
        self.assertEqual(definition.settings.time_limit, 10)
        self.assertEqual([question.id for question in definition.questions], [q.pk for q in self.questions])
        self.assertEqual(definition.required_field_keys(), ["name", "email"])

    def test_get_missing_quiz_definition(self):
        with self.assertRaises(NotFound):
            get_quiz_definition(999999)

    def test_save_quiz_draft_creates_quiz(self):
        draft = parse_or_invalid(QuizDraft, draft_payload(timeLimit=5, allowRetake=True))
        quiz = save_quiz_draft(draft, QuizDefinitionTestCase.test_user)

        self.assertEqual(quiz.title, "Geography")
        self.assertTrue(quiz.allow_retake)
        self.assertEqual(quiz.questions.count(), 2)
        self.assertEqual(list(quiz.questions.values_list('question_number', flat=True)), [1, 2])
        self.assertEqual(quiz.questions.first().options, ["Paris", "Lyon"])
        self.assertEqual(list(quiz.participant_fields.values_list('label', flat=True)), ["Name", "Email", "Team"])

    def test_updating_quiz_keeps_answers_to_kept_questions(self):
        quiz = QuizDefinitionTestCase.test_quiz
        first, second, third = self.questions
        recorded = record_attempt(
            quiz_id=quiz.pk,
            participant_info={"name": "Ann", "email": "ann@example.com"},
            answers=[{"questionId": first.pk, "participantAnswer": "Paris"},
                     {"questionId": third.pk, "participantAnswer": "Rome"}],
        )

        payload = draft_payload(title="Capitals quiz", questions=[
            {"id": first.pk, "type": "multiple-choice", "questionText": "What is the capital of France?",
             "options": ["London", "Paris"], "correctAnswer": "Paris"},
            {"id": second.pk, "type": "true-false", "questionText": "Rome is in Italy", "correctAnswer": "True"},
        ])
        save_quiz_draft(parse_or_invalid(QuizDraft, payload), QuizDefinitionTestCase.test_user, quiz=quiz)

        first.refresh_from_db()
        self.assertEqual(first.question_text, "What is the capital of France?")
        self.assertFalse(Question.objects.filter(pk=third.pk).exists())
        stored = ParticipantAnswer.objects.filter(quiz_result_id=recorded.quiz_result_id)
        self.assertEqual([answer.question_id for answer in stored], [first.pk])


class QuizTestCase(TestCase):

    @classmethod
    def setUpTestData(cls):
        cls.test_user = User.objects.create_user(username='testuser', password='password')
        cls.random_user = User.objects.create_user(username='randomuser', password='random')
        cls.test_quiz, cls.questions = create_quiz_with_questions(cls.test_user)

    def setUp(self):
        self.authenticated_client = Client()
        self.authenticated_client.login(username='testuser', password='password')
        self.random_client = Client()
        self.random_client.login(username='randomuser', password='random')
        self.unauthenticated_client = Client()

    def test_authenticated_client_get_quiz(self):
        response = self.authenticated_client.get('/quiz/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.context['quizzes']), 1)
        self.assertEqual(response.context['quizzes'][0], QuizTestCase.test_quiz)
        self.assertEqual(response.context['quizzes'][0].question_count, 3)

    def test_unauthenticated_client_get_quiz(self):
        response = self.unauthenticated_client.get('/quiz/')
        self.assertEqual(response.status_code, 302)

    def test_other_user_sees_no_quizzes(self):
        response = self.random_client.get('/quiz/')
        self.assertEqual(len(response.context['quizzes']), 0)

    def test_authenticated_client_get_quiz_detail_data(self):
        response = self.authenticated_client.get(f'/quiz/{QuizTestCase.test_quiz.pk}')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.context['quiz'], QuizTestCase.test_quiz)
        self.assertEqual(len(response.context['questions']), 3)
        self.assertIn(f'/quiz/{QuizTestCase.test_quiz.pk}/definition', response.context['share_url'])

    def test_other_user_get_quiz_detail_forbidden(self):
        response = self.random_client.get(f'/quiz/{QuizTestCase.test_quiz.pk}')
        self.assertEqual(response.status_code, 403)

    def test_get_missing_quiz_detail(self):
        response = self.authenticated_client.get('/quiz/999999')
        self.assertEqual(response.status_code, 404)

    def test_create_quiz_page(self):
        response = self.authenticated_client.get('/quiz/create')
        self.assertEqual(response.status_code, 200)
        starter = json.loads(response.context['form'].initial['whole_quiz'])
        self.assertEqual([field['label'] for field in starter['participantFields']], ["Name", "Email"])

    def test_save_quiz(self):
        response = self.authenticated_client.post('/quiz/save', {
            'whole_quiz': json.dumps(draft_payload(timeLimit=15)),
        })
        quiz = Quiz.objects.get(title="Geography", user=QuizTestCase.test_user)
        self.assertRedirects(response, f'/quiz/{quiz.pk}')
        self.assertEqual(quiz.time_limit, 15)
        self.assertEqual(quiz.questions.count(), 2)
        self.assertEqual(quiz.participant_fields.count(), 3)

    def test_save_quiz_invalid_json(self):
        response = self.authenticated_client.post('/quiz/save', {'whole_quiz': '{"title": '})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['form_errors']['whole_quiz'], ["Invalid JSON"])
        self.assertEqual(Quiz.objects.count(), 1)

    def test_save_quiz_invalid_question(self):
        payload = draft_payload(questions=[
            {"type": "multiple-choice", "questionText": "Capital of France?", "options": ["Lyon", "Nice"],
             "correctAnswer": "Paris"},
        ])
        response = self.authenticated_client.post('/quiz/save', {'whole_quiz': json.dumps(payload)})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], "Validation error")
        self.assertFalse(Quiz.objects.filter(title="Geography").exists())

    def test_save_quiz_with_optional_name_and_email(self):
        payload = draft_payload()
        payload["participantFields"][0]["required"] = False
        payload["participantFields"][1]["required"] = False
        response = self.authenticated_client.post('/quiz/save', {'whole_quiz': json.dumps(payload)})
        self.assertEqual(response.status_code, 400)
        self.assertFalse(Quiz.objects.filter(title="Geography").exists())

    def test_save_quiz_duplicate_title(self):
        response = self.authenticated_client.post('/quiz/save', {
            'whole_quiz': json.dumps(draft_payload(title="Capitals quiz")),
        })
        self.assertEqual(response.status_code, 400)
        self.assertEqual(Quiz.objects.filter(title="Capitals quiz").count(), 1)

    def test_same_title_for_another_user(self):
        response = self.random_client.post('/quiz/save', {
            'whole_quiz': json.dumps(draft_payload(title="Capitals quiz")),
        })
        self.assertEqual(response.status_code, 302)
        self.assertEqual(Quiz.objects.filter(title="Capitals quiz").count(), 2)

    def test_save_quiz_get_not_allowed(self):
        response = self.authenticated_client.get('/quiz/save')
        self.assertEqual(response.status_code, 405)

    def test_update_quiz_page(self):
        response = self.authenticated_client.get(f'/quiz/{QuizTestCase.test_quiz.pk}/update')
        self.assertEqual(response.status_code, 200)
        current = json.loads(response.context['form'].initial['whole_quiz'])
        self.assertEqual(current['title'], "Capitals quiz")
        self.assertEqual([q['id'] for q in current['questions']], [q.pk for q in self.questions])

    def test_update_quiz(self):
        first = self.questions[0]
        payload = draft_payload(title="Renamed quiz", questions=[
            {"id": first.pk, "type": "multiple-choice", "questionText": "Capital of France?",
             "options": ["Paris", "Marseille"], "correctAnswer": "Paris"},
        ])
        response = self.authenticated_client.post(f'/quiz/{QuizTestCase.test_quiz.pk}/update',
                                                  {'whole_quiz': json.dumps(payload)})
        self.assertRedirects(response, f'/quiz/{QuizTestCase.test_quiz.pk}')

        quiz = Quiz.objects.get(pk=QuizTestCase.test_quiz.pk)
        self.assertEqual(quiz.title, "Renamed quiz")
        self.assertEqual(list(quiz.questions.values_list('pk', flat=True)), [first.pk])

    def test_update_quiz_other_user_forbidden(self):
        response = self.random_client.post(f'/quiz/{QuizTestCase.test_quiz.pk}/update',
                                           {'whole_quiz': json.dumps(draft_payload())})
        self.assertEqual(response.status_code, 403)
        self.assertEqual(Quiz.objects.get(pk=QuizTestCase.test_quiz.pk).title, "Capitals quiz")

    def test_preview_quiz(self):
        response = self.authenticated_client.get(f'/quiz/preview/{QuizTestCase.test_quiz.pk}')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()['questions']), 3)

    def test_preview_quiz_other_user_forbidden(self):
        response = self.random_client.get(f'/quiz/preview/{QuizTestCase.test_quiz.pk}')
        self.assertEqual(response.status_code, 403)

    def test_delete_quiz(self):
        record_attempt(
            quiz_id=QuizTestCase.test_quiz.pk,
            participant_info={"name": "Ann", "email": "ann@example.com"},
            answers=[{"questionId": self.questions[0].pk, "participantAnswer": "Paris"}],
        )
        response = self.authenticated_client.post(f'/quiz/delete/{QuizTestCase.test_quiz.pk}')
        self.assertRedirects(response, '/quiz/')
        self.assertFalse(Quiz.objects.filter(pk=QuizTestCase.test_quiz.pk).exists())
        self.assertEqual(QuizResult.objects.count(), 0)
        self.assertEqual(ParticipantAnswer.objects.count(), 0)

    def test_delete_quiz_other_user(self):
        response = self.random_client.post(f'/quiz/delete/{QuizTestCase.test_quiz.pk}')
        self.assertEqual(response.status_code, 404)
        self.assertTrue(Quiz.objects.filter(pk=QuizTestCase.test_quiz.pk).exists())

    def test_delete_quiz_unauthenticated(self):
        response = self.unauthenticated_client.post(f'/quiz/delete/{QuizTestCase.test_quiz.pk}')
        self.assertEqual(response.status_code, 404)


class QuizSubmissionTestCase(TestCase):

    @classmethod
    def setUpTestData(cls):
        cls.test_user = User.objects.create_user(username='testuser', password='password')
        cls.test_quiz, cls.questions = create_quiz_with_questions(cls.test_user)
        cls.other_quiz, cls.other_questions = create_quiz_with_questions(cls.test_user, title="Other quiz")

    def setUp(self):
        self.client = Client(enforce_csrf_checks=True)

    def submit(self, payload, quiz=None):
        quiz = quiz or QuizSubmissionTestCase.test_quiz
        return self.client.post(f'/quiz/{quiz.pk}/submit', data=json.dumps(payload),
                                content_type='application/json')

    def payload(self, **overrides):
        first, second, third = self.questions
        payload = {
            "participantName": "Ann",
            "participantEmail": "ann@example.com",
            "score": 67,
            "participantInfo": {"Company": "Acme"},
            "answers": [
                {"questionId": first.pk, "participantAnswer": "Paris"},
                {"questionId": second.pk, "participantAnswer": "True"},
                {"questionId": third.pk, "participantAnswer": "rome"},
            ],
        }
        payload.update(overrides)
        return payload

    def test_get_quiz_definition(self):
        response = self.client.get(f'/quiz/{QuizSubmissionTestCase.test_quiz.pk}/definition')
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['title'], "Capitals quiz")
        self.assertEqual(set(data['settings']), {"allowRetake", "timeLimit", "startDate", "endDate"})
        self.assertEqual(data['questions'][0]['type'], "multiple-choice")
        self.assertEqual(data['questions'][0]['options'], ["London", "Paris", "Berlin"])
        self.assertEqual(data['questions'][1]['correctAnswer'], "True")
        self.assertEqual([field['label'] for field in data['participantFields']], ["Name", "Email", "Company"])

    def test_get_missing_quiz_definition(self):
        response = self.client.get('/quiz/999999/definition')
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"error": "Quiz not found"})

    def test_submit_stores_result_and_answers(self):
        response = self.submit(self.payload())
        self.assertEqual(response.status_code, 201)
        data = response.json()
        self.assertEqual(data['answersStored'], 3)
        self.assertEqual(data['score'], 67)

        quiz_result = QuizResult.objects.get(pk=data['quizResultId'])
        self.assertEqual(quiz_result.participant_name, "Ann")
        self.assertEqual(quiz_result.participant_info,
                         {"company": "Acme", "name": "Ann", "email": "ann@example.com"})
        self.assertEqual(quiz_result.answers.count(), 3)

    def test_submit_recomputes_score(self):
        response = self.submit(self.payload(score=100))
        quiz_result = QuizResult.objects.get(pk=response.json()['quizResultId'])
        self.assertEqual(quiz_result.score, 67)
        self.assertEqual(quiz_result.client_score, 100)

    def test_submit_without_client_score(self):
        payload = self.payload()
        del payload['score']
        response = self.submit(payload)
        self.assertEqual(response.status_code, 201)

    def test_submit_foreign_question_stores_nothing(self):
        payload = self.payload()
        payload['answers'].append({"questionId": self.other_questions[0].pk, "participantAnswer": "Paris"})
        response = self.submit(payload)
        self.assertEqual(response.status_code, 400)
        self.assertIn("doesn't belong to quiz", response.json()['error'])
        self.assertEqual(QuizResult.objects.count(), 0)
        self.assertEqual(ParticipantAnswer.objects.count(), 0)

    def test_submit_missing_name(self):
        response = self.submit(self.payload(participantName=""))
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], "Missing required fields")

    def test_submit_without_answers(self):
        response = self.submit(self.payload(answers=[]))
        self.assertEqual(response.status_code, 400)
        self.assertEqual(QuizResult.objects.count(), 0)

    def test_submit_invalid_json(self):
        response = self.client.post(f'/quiz/{QuizSubmissionTestCase.test_quiz.pk}/submit', data='{"answers": [',
                                    content_type='application/json')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], "Invalid JSON")

    def test_submit_missing_quiz(self):
        response = self.client.post('/quiz/999999/submit', data=json.dumps(self.payload()),
                                    content_type='application/json')
        self.assertEqual(response.status_code, 404)

    def test_submit_before_start(self):
        quiz = QuizSubmissionTestCase.test_quiz
        quiz.start_date = timezone.now() + timedelta(days=1)
        quiz.save()
        response = self.submit(self.payload())
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()['reason'], "not-started")
        self.assertEqual(QuizResult.objects.count(), 0)

    def test_submit_after_end_is_accepted(self):
        quiz = QuizSubmissionTestCase.test_quiz
        quiz.end_date = timezone.now() - timedelta(minutes=1)
        quiz.save()
        response = self.submit(self.payload())
        self.assertEqual(response.status_code, 201)

    def test_identical_submissions_create_two_attempts(self):
        first = self.submit(self.payload())
        second = self.submit(self.payload())
        self.assertEqual(first.status_code, 201)
        self.assertEqual(second.status_code, 201)
        self.assertNotEqual(first.json()['quizResultId'], second.json()['quizResultId'])
        self.assertEqual(QuizResult.objects.count(), 2)
        self.assertEqual(ParticipantAnswer.objects.count(), 6)

    def test_submission_token_replays_stored_attempt(self):
        first = self.submit(self.payload(submissionToken="attempt-1"))
        second = self.submit(self.payload(submissionToken="attempt-1"))
        self.assertEqual(first.status_code, 201)
        self.assertEqual(second.status_code, 200)
        self.assertEqual(first.json(), second.json())
        self.assertEqual(QuizResult.objects.count(), 1)


class AttemptFlowTestCase(TestCase):

    @classmethod
    def setUpTestData(cls):
        cls.test_user = User.objects.create_user(username='testuser', password='password')
        cls.test_quiz, cls.questions = create_quiz_with_questions(cls.test_user, time_limit=5)
        cls.retake_quiz, cls.retake_questions = create_quiz_with_questions(cls.test_user, title="Retake quiz",
                                                                           allow_retake=True)

    def post(self, quiz, action, payload=None):
        return self.client.post(f'/quiz/{quiz.pk}/attempt/{action}', data=json.dumps(payload or {}),
                                content_type='application/json')

    def complete(self, quiz, questions, answers=("Paris", "True", "Rome")):
        self.post(quiz, "start")
        self.post(quiz, "participant", {"participantInfo": {"Name": "Ann", "Email": "ann@example.com"}})
        for question, answer in zip(questions, answers):
            self.post(quiz, "answer", {"questionId": question.pk, "answer": answer})
        return self.post(quiz, "submit")

    def test_attempt_state_before_start(self):
        response = self.client.get(f'/quiz/{AttemptFlowTestCase.test_quiz.pk}/attempt')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['state']['status'], NOT_STARTED)
        self.assertIn('csrftoken', response.cookies)

    def test_full_attempt(self):
        quiz = AttemptFlowTestCase.test_quiz

        response = self.post(quiz, "start")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['state']['status'], COLLECTING_INFO)
        self.assertEqual(response.json()['missingFields'], ["name", "email"])

        response = self.post(quiz, "participant", {"participantInfo": {"Name": "Ann"}})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['missingFields'], ["email"])

        response = self.post(quiz, "participant", {"participantInfo": {"Email": "ann@example.com"}})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['state']['status'], ANSWERING)
        self.assertEqual(response.json()['state']['timeRemaining'], 300)

        for question, answer in zip(self.questions, ["Paris", "False", "Rome"]):
            response = self.post(quiz, "answer", {"questionId": question.pk, "answer": answer})
            self.assertEqual(response.status_code, 200)

        response = self.post(quiz, "submit")
        self.assertEqual(response.status_code, 200)
        state = response.json()['state']
        self.assertEqual(state['status'], COMPLETED)
        self.assertTrue(state['saved'])
        self.assertEqual(state['result']['percentage'], 67)

        quiz_result = QuizResult.objects.get(pk=state['attemptId'])
        self.assertEqual(quiz_result.score, 67)
        self.assertEqual(quiz_result.submission_token, state['attemptKey'])
        self.assertEqual(quiz_result.participant_info["company"], "")
        self.assertEqual(quiz_result.answers.count(), 3)

        # the stored attempt is not written twice
        response = self.post(quiz, "submit")
        self.assertEqual(response.json()['state']['status'], COMPLETED)
        self.assertEqual(QuizResult.objects.count(), 1)

    def test_start_missing_quiz(self):
        response = self.client.post('/quiz/999999/attempt/start')
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['state']['reason'], "not-found")

    def test_start_before_window(self):
        quiz = AttemptFlowTestCase.test_quiz
        quiz.start_date = timezone.now() + timedelta(days=1)
        quiz.save()
        response = self.post(quiz, "start")
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()['state']['status'], UNAVAILABLE)
        self.assertEqual(response.json()['state']['reason'], "not-started")

    def test_answer_before_start(self):
        response = self.post(AttemptFlowTestCase.test_quiz, "answer",
                             {"questionId": self.questions[0].pk, "answer": "Paris"})
        self.assertEqual(response.status_code, 400)

    def test_answer_with_bad_question_id(self):
        quiz = AttemptFlowTestCase.test_quiz
        self.post(quiz, "start")
        self.post(quiz, "participant", {"participantInfo": {"Name": "Ann", "Email": "ann@example.com"}})
        response = self.post(quiz, "answer", {"questionId": "one", "answer": "Paris"})
        self.assertEqual(response.status_code, 400)

    def test_submit_incomplete(self):
        quiz = AttemptFlowTestCase.test_quiz
        self.post(quiz, "start")
        self.post(quiz, "participant", {"participantInfo": {"Name": "Ann", "Email": "ann@example.com"}})
        self.post(quiz, "answer", {"questionId": self.questions[0].pk, "answer": "Paris"})
        response = self.post(quiz, "submit")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['state']['status'], ANSWERING)
        self.assertEqual(QuizResult.objects.count(), 0)

    def test_retake_not_allowed(self):
        self.complete(AttemptFlowTestCase.test_quiz, self.questions)
        response = self.post(AttemptFlowTestCase.test_quiz, "retake")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['state']['status'], COMPLETED)

    def test_retake_allowed(self):
        response = self.complete(AttemptFlowTestCase.retake_quiz, self.retake_questions)
        first_key = response.json()['state']['attemptKey']

        response = self.post(AttemptFlowTestCase.retake_quiz, "retake")
        self.assertEqual(response.status_code, 200)
        state = response.json()['state']
        self.assertEqual(state['status'], COLLECTING_INFO)
        self.assertEqual(state['attemptNumber'], 2)
        self.assertNotEqual(state['attemptKey'], first_key)

        self.complete(AttemptFlowTestCase.retake_quiz, self.retake_questions)
        self.assertEqual(QuizResult.objects.filter(quiz=AttemptFlowTestCase.retake_quiz).count(), 2)
