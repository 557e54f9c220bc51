"""
Boundary shapes for quizzes and submissions.

Everything that crosses the HTTP boundary (quiz definitions sent to the
participant, quizzes sent by the author, attempts sent back) is parsed into
one of these models. Options and correct answers arrive either as plain
strings or as ``{"id": ..., "text": ...}`` objects; both are normalised to
plain text here so nothing downstream has to check the shape again.
"""
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from quiz.exceptions import InvalidInput
from quiz.models import MULTIPLE_CHOICE, TRUE_FALSE, SHORT_ANSWER

TRUE_FALSE_OPTIONS = ["True", "False"]

# results are stored against the participant's name and email
ALWAYS_REQUIRED_FIELDS = ("name", "email")

QuestionType = Literal["multiple-choice", "true-false", "short-answer"]


def option_text(value) -> str:
    if isinstance(value, dict):
        return str(value.get("text") or "")
    if value is None:
        return ""
    return str(value)


class BoundaryModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class QuizSettings(BoundaryModel):
    allow_retake: bool = Field(False, alias="allowRetake")
    time_limit: Optional[int] = Field(None, alias="timeLimit", ge=1)
    start_date: Optional[datetime] = Field(None, alias="startDate")
    end_date: Optional[datetime] = Field(None, alias="endDate")

    @field_validator("time_limit", "start_date", "end_date", mode="before")
    @classmethod
    def blank_means_unset(cls, value):
        # forms send "" and 0 for "no limit"
        if value in ("", 0, "0"):
            return None
        return value


class QuestionDefinition(BoundaryModel):
    id: Optional[int] = None
    question_type: QuestionType = Field(MULTIPLE_CHOICE, alias="type")
    question_text: str = Field(..., alias="questionText")
    options: List[str] = Field(default_factory=list)
    correct_answer: str = Field(..., alias="correctAnswer")

    @field_validator("options", mode="before")
    @classmethod
    def normalise_options(cls, value):
        if value is None:
            return []
        return [option_text(option) for option in value]

    @field_validator("correct_answer", mode="before")
    @classmethod
    def normalise_correct_answer(cls, value):
        return option_text(value)

    @model_validator(mode="after")
    def fill_true_false_options(self):
        if self.question_type == TRUE_FALSE and not self.options:
            self.options = list(TRUE_FALSE_OPTIONS)
        if self.question_type == SHORT_ANSWER:
            self.options = []
        return self


class QuestionDraft(QuestionDefinition):
    """A question as submitted by the quiz author, checked before it is saved."""

    @model_validator(mode="after")
    def check_correct_answer(self):
        if not self.question_text.strip():
            raise ValueError("Question text must not be empty.")

        if self.question_type == MULTIPLE_CHOICE:
            if len(self.options) < 2:
                raise ValueError("Multiple choice questions need at least two options.")
            if any(not option.strip() for option in self.options):
                raise ValueError("Option text cannot be empty.")

        if self.question_type in (MULTIPLE_CHOICE, TRUE_FALSE):
            if self.correct_answer not in self.options:
                raise ValueError(f"Correct answer '{self.correct_answer}' is not one of the options.")
        elif not self.correct_answer:
            raise ValueError("Short answer questions need a correct answer.")

        return self


class ParticipantFieldDefinition(BoundaryModel):
    id: Optional[int] = None
    label: str
    field_type: Literal["text", "email"] = Field("text", alias="type")
    required: bool = False

    @property
    def key(self) -> str:
        return self.label.strip().lower()


def default_participant_fields() -> List[ParticipantFieldDefinition]:
    return [
        ParticipantFieldDefinition(label="Name", field_type="text", required=True),
        ParticipantFieldDefinition(label="Email", field_type="email", required=True),
    ]


class QuizDefinition(BoundaryModel):
    """Read-only snapshot of a quiz handed to an attempt."""

    id: int
    title: str
    description: str = ""
    settings: QuizSettings = Field(default_factory=QuizSettings)
    questions: List[QuestionDefinition] = Field(default_factory=list)
    participant_fields: List[ParticipantFieldDefinition] = Field(default_factory=list, alias="participantFields")

    def question_ids(self):
        return {question.id for question in self.questions}

    def required_field_keys(self):
        keys = [field.key for field in self.participant_fields if field.required]
        return keys + [key for key in ALWAYS_REQUIRED_FIELDS if key not in keys]


class QuizDraft(BoundaryModel):
    title: str = Field(..., min_length=1, max_length=128)
    description: str = ""
    settings: QuizSettings = Field(default_factory=QuizSettings)
    questions: List[QuestionDraft] = Field(default_factory=list)
    participant_fields: List[ParticipantFieldDefinition] = Field(
        default_factory=default_participant_fields, alias="participantFields")

    @model_validator(mode="after")
    def check_fields(self):
        keys = [field.key for field in self.participant_fields]
        if any(not key for key in keys):
            raise ValueError("Please fill in all participant field labels")
        if len(set(keys)) != len(keys):
            raise ValueError("Participant field labels must be unique.")
        if any(key not in keys for key in ALWAYS_REQUIRED_FIELDS):
            raise ValueError("Participant fields must include Name and Email.")
        if any(not field.required for field in self.participant_fields if field.key in ALWAYS_REQUIRED_FIELDS):
            raise ValueError("Name and Email must be required fields.")

        question_ids = [question.id for question in self.questions if question.id is not None]
        if len(set(question_ids)) != len(question_ids):
            raise ValueError("Each question can only appear once.")

        start, end = self.settings.start_date, self.settings.end_date
        if start and end and end < start:
            raise ValueError("End date must be after the start date.")
        return self


class SubmittedAnswer(BoundaryModel):
    question_id: int = Field(..., alias="questionId", ge=1)
    participant_answer: str = Field(..., alias="participantAnswer")


class AttemptSubmission(BoundaryModel):
    participant_name: str = Field(..., alias="participantName")
    participant_email: str = Field(..., alias="participantEmail")
    # informational only, the stored score is recomputed from the answers
    score: Optional[int] = None
    answers: List[SubmittedAnswer]
    participant_info: Dict[str, str] = Field(default_factory=dict, alias="participantInfo")
    submission_token: Optional[str] = Field(None, alias="submissionToken", max_length=64)


def _describe(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"])
    if location:
        return f"{location}: {first['msg']}"
    return first["msg"]


def parse_or_invalid(model, data):
    """Validate ``data`` against ``model`` and turn pydantic errors into InvalidInput."""
    if not isinstance(data, dict):
        raise InvalidInput("Expected a JSON object.")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise InvalidInput(_describe(e)) from e
