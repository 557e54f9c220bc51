"""
Lifecycle of one participant's attempt at a quiz.

The lifecycle is an explicit state machine::

    not-started -> collecting-info -> answering -> submitting -> completed
         |                               |
         +-> unavailable                 +-> expired

Every change goes through ``transition(state, event, definition)``, a pure
function that returns a new ``AttemptState``. The countdown is just another
event (``Tick``), so the timer and the participant's own submit go through
the same function one at a time. Whichever reaches ``submitting`` first wins;
later submit or tick events are ignored because of the ``submitting`` guard.

``AttemptSession`` wraps the reducer with its collaborators: it fetches the
quiz definition once at the start, and when a transition lands in
``submitting`` it scores the answers locally and hands them to the
``persist_attempt`` collaborator exactly once.
"""
import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Dict, Optional

from django.utils import timezone

from quiz.availability import check_availability
from quiz.exceptions import InvalidInput, NotFound, QuizMakerError
from quiz.schemas import QuizDefinition, SubmittedAnswer
from quiz.scoring import ScoreResult, score_answers

logger = logging.getLogger("quiz_maker")

NOT_STARTED = "not-started"
COLLECTING_INFO = "collecting-info"
ANSWERING = "answering"
SUBMITTING = "submitting"
COMPLETED = "completed"
UNAVAILABLE = "unavailable"
EXPIRED = "expired"

MANUAL = "manual"
TIMEOUT = "timeout"

QUIZ_NOT_FOUND = "not-found"


@dataclass(frozen=True)
class AttemptState:
    status: str = NOT_STARTED
    attempt_key: Optional[str] = None
    attempt_number: int = 1
    participant_info: Dict[str, str] = field(default_factory=dict)
    answers: Dict[int, str] = field(default_factory=dict)
    # seconds, None when the quiz has no time limit
    time_remaining: Optional[int] = None
    reason: Optional[str] = None
    trigger: Optional[str] = None
    submitting: bool = False
    window_closed: bool = False
    result: Optional[ScoreResult] = None
    attempt_id: Optional[int] = None
    saved: Optional[bool] = None
    persistence_error: Optional[str] = None

    def to_dict(self):
        return {
            "status": self.status,
            "attemptKey": self.attempt_key,
            "attemptNumber": self.attempt_number,
            "participantInfo": dict(self.participant_info),
            "answers": {str(question_id): value for question_id, value in self.answers.items()},
            "timeRemaining": self.time_remaining,
            "reason": self.reason,
            "trigger": self.trigger,
            "submitting": self.submitting,
            "windowClosed": self.window_closed,
            "result": self.result.to_dict() if self.result else None,
            "attemptId": self.attempt_id,
            "saved": self.saved,
            "persistenceError": self.persistence_error,
        }

    @classmethod
    def from_dict(cls, data):
        result = data.get("result")
        if result is not None:
            result = ScoreResult(
                percentage=result["percentage"],
                correct_count=result["correctCount"],
                total=result["total"],
                breakdown={int(key): value for key, value in result.get("breakdown", {}).items()},
            )

        return cls(
            status=data.get("status", NOT_STARTED),
            attempt_key=data.get("attemptKey"),
            attempt_number=data.get("attemptNumber", 1),
            participant_info=dict(data.get("participantInfo", {})),
            answers={int(key): value for key, value in data.get("answers", {}).items()},
            time_remaining=data.get("timeRemaining"),
            reason=data.get("reason"),
            trigger=data.get("trigger"),
            submitting=data.get("submitting", False),
            window_closed=data.get("windowClosed", False),
            result=result,
            attempt_id=data.get("attemptId"),
            saved=data.get("saved"),
            persistence_error=data.get("persistenceError"),
        )


# Events

@dataclass(frozen=True)
class Start:
    now: datetime
    attempt_key: Optional[str] = None


@dataclass(frozen=True)
class ParticipantInfo:
    values: Dict[str, str]


@dataclass(frozen=True)
class AnswerQuestion:
    question_id: int
    value: str


@dataclass(frozen=True)
class Tick:
    pass


@dataclass(frozen=True)
class SubmitRequested:
    now: datetime


@dataclass(frozen=True)
class PersistSucceeded:
    attempt_id: int


@dataclass(frozen=True)
class PersistFailed:
    error: str


@dataclass(frozen=True)
class Retake:
    pass


def missing_required_fields(definition, participant_info):
    return [
        key for key in definition.required_field_keys()
        if not participant_info.get(key, "").strip()
    ]


def unanswered_questions(definition, answers):
    return [question.id for question in definition.questions if question.id not in answers]


def _begin_submitting(state, definition, trigger, window_closed=False):
    return replace(
        state,
        status=SUBMITTING,
        trigger=trigger,
        submitting=True,
        window_closed=window_closed,
        result=score_answers(definition.questions, state.answers),
    )


def transition(state: AttemptState, event, definition: Optional[QuizDefinition]) -> AttemptState:
    """Return the state after ``event``; events that do not apply leave it unchanged."""

    if isinstance(event, Start):
        if state.status != NOT_STARTED:
            return state
        if definition is None:
            return replace(state, status=UNAVAILABLE, reason=QUIZ_NOT_FOUND)

        availability = check_availability(definition.settings, event.now)
        if not availability.available:
            return replace(state, status=UNAVAILABLE, reason=availability.reason)

        # every field is tracked by key, optional ones may stay blank
        participant_info = {participant_field.key: "" for participant_field in definition.participant_fields}
        return replace(state, status=COLLECTING_INFO, attempt_key=event.attempt_key,
                       participant_info=participant_info)

    if isinstance(event, ParticipantInfo):
        if state.status != COLLECTING_INFO:
            return state

        participant_info = dict(state.participant_info)
        for key, value in event.values.items():
            key = key.strip().lower()
            if key in participant_info:
                participant_info[key] = "" if value is None else str(value)

        if missing_required_fields(definition, participant_info):
            return replace(state, participant_info=participant_info)

        time_limit = definition.settings.time_limit
        return replace(
            state,
            status=ANSWERING,
            participant_info=participant_info,
            time_remaining=time_limit * 60 if time_limit else None,
        )

    if isinstance(event, AnswerQuestion):
        if state.status != ANSWERING or event.question_id not in definition.question_ids():
            return state
        answers = dict(state.answers)
        answers[event.question_id] = event.value
        return replace(state, answers=answers)

    if isinstance(event, Tick):
        if state.status != ANSWERING or state.submitting or state.time_remaining is None:
            return state

        time_remaining = state.time_remaining - 1
        if time_remaining > 0:
            return replace(state, time_remaining=time_remaining)

        if not state.answers:
            return replace(state, status=EXPIRED, time_remaining=0, trigger=TIMEOUT)
        return _begin_submitting(replace(state, time_remaining=0), definition, TIMEOUT)

    if isinstance(event, SubmitRequested):
        if state.status != ANSWERING or state.submitting:
            return state
        if unanswered_questions(definition, state.answers):
            return state
        if missing_required_fields(definition, state.participant_info):
            return state

        # an attempt already under way may still be submitted after the window closes
        availability = check_availability(definition.settings, event.now)
        return _begin_submitting(state, definition, MANUAL, window_closed=not availability.available)

    if isinstance(event, PersistSucceeded):
        if state.status != SUBMITTING:
            return state
        return replace(state, status=COMPLETED, attempt_id=event.attempt_id, saved=True)

    if isinstance(event, PersistFailed):
        if state.status != SUBMITTING:
            return state
        return replace(state, status=COMPLETED, saved=False, persistence_error=event.error)

    if isinstance(event, Retake):
        if state.status != COMPLETED or not definition.settings.allow_retake:
            return state
        return AttemptState(attempt_number=state.attempt_number + 1)

    raise TypeError(f"Unknown attempt event {event!r}")


class AttemptSession:
    """Owns one attempt's state, the quiz snapshot and the collaborators."""

    def __init__(self, quiz_id, get_quiz_definition, persist_attempt, clock=timezone.now,
                 state=None, definition=None, ticked_at=None):
        self.quiz_id = quiz_id
        self.get_quiz_definition = get_quiz_definition
        self.persist_attempt = persist_attempt
        self.clock = clock
        self.state = state or AttemptState()
        self.definition = definition
        self.ticked_at = ticked_at
        # (from, to) pairs, in order
        self.transitions = []

    @property
    def status(self):
        return self.state.status

    def dispatch(self, event) -> AttemptState:
        previous = self.state
        self.state = transition(previous, event, self.definition)

        if self.state.status != previous.status:
            self.transitions.append((previous.status, self.state.status))
            logger.debug(f"Attempt on quiz {self.quiz_id}: {previous.status} -> {self.state.status}")

        if self.state.status == SUBMITTING and previous.status != SUBMITTING:
            self._persist()

        return self.state

    def start(self) -> AttemptState:
        if self.state.status != NOT_STARTED:
            return self.state

        # the definition is fetched once, later edits to the quiz do not reach this attempt
        try:
            self.definition = self.get_quiz_definition(self.quiz_id)
        except NotFound as e:
            logger.error(e)
            self.definition = None

        return self.dispatch(Start(now=self.clock(), attempt_key=uuid.uuid4().hex))

    def enter_participant_info(self, values) -> AttemptState:
        if self.state.status != COLLECTING_INFO:
            raise InvalidInput("Participant information can only be entered before answering.")

        state = self.dispatch(ParticipantInfo(values=values))
        if state.status == ANSWERING:
            self.ticked_at = self.clock()
        return state

    def answer(self, question_id, value) -> AttemptState:
        self.advance_clock()
        if self.state.status != ANSWERING:
            raise InvalidInput("This attempt is not accepting answers.")
        if question_id not in self.definition.question_ids():
            raise InvalidInput(f"Question {question_id} is not part of this quiz.")
        if not isinstance(value, str):
            raise InvalidInput("Answers must be text.")
        return self.dispatch(AnswerQuestion(question_id=question_id, value=value))

    def tick(self) -> AttemptState:
        return self.dispatch(Tick())

    def advance_clock(self, now=None) -> AttemptState:
        """Replay the whole seconds elapsed since the last tick as Tick events."""
        now = now or self.clock()
        if self.state.status != ANSWERING or self.state.time_remaining is None or self.ticked_at is None:
            return self.state

        elapsed = int((now - self.ticked_at).total_seconds())
        for _ in range(max(elapsed, 0)):
            if self.tick().status != ANSWERING:
                break
        if elapsed > 0:
            self.ticked_at = self.ticked_at + timedelta(seconds=elapsed)
        return self.state

    def submit(self) -> AttemptState:
        self.advance_clock()
        if self.state.status != ANSWERING or self.state.submitting:
            # the timer got there first, nothing more to do
            return self.state

        unanswered = unanswered_questions(self.definition, self.state.answers)
        if unanswered:
            raise InvalidInput(f"Please answer every question before submitting ({len(unanswered)} left).")

        return self.dispatch(SubmitRequested(now=self.clock()))

    def retake(self) -> AttemptState:
        if self.state.status != COMPLETED or not self.definition.settings.allow_retake:
            raise InvalidInput("This quiz does not allow retakes.")

        self.dispatch(Retake())
        self.ticked_at = None
        return self.start()

    def _persist(self):
        info = self.state.participant_info
        answers = [
            SubmittedAnswer(question_id=question.id, participant_answer=self.state.answers[question.id])
            for question in self.definition.questions
            if question.id in self.state.answers
        ]

        try:
            recorded = self.persist_attempt(
                quiz_id=self.definition.id,
                participant_info=info,
                answers=answers,
                client_score=self.state.result.percentage,
                submission_token=self.state.attempt_key,
            )
        except QuizMakerError as e:
            # the participant still sees their score, the failure is kept on the state
            logger.error(f"Could not save attempt on quiz {self.quiz_id}: {e}")
            self.dispatch(PersistFailed(error=e.message))
        else:
            self.dispatch(PersistSucceeded(attempt_id=recorded.quiz_result_id))

    def to_dict(self):
        return {
            "quizId": self.quiz_id,
            "state": self.state.to_dict(),
            "definition": self.definition.model_dump(mode="json") if self.definition else None,
            "tickedAt": self.ticked_at.isoformat() if self.ticked_at else None,
        }

    @classmethod
    def from_dict(cls, data, get_quiz_definition, persist_attempt, clock=timezone.now):
        definition = data.get("definition")
        ticked_at = data.get("tickedAt")
        return cls(
            quiz_id=data["quizId"],
            get_quiz_definition=get_quiz_definition,
            persist_attempt=persist_attempt,
            clock=clock,
            state=AttemptState.from_dict(data.get("state", {})),
            definition=QuizDefinition.model_validate(definition) if definition else None,
            ticked_at=datetime.fromisoformat(ticked_at) if ticked_at else None,
        )
