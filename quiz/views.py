import json
import logging

from django.contrib import messages
from django.contrib.auth.decorators import login_required
from django.contrib.auth.mixins import LoginRequiredMixin
from django.db import IntegrityError
from django.db.models import Count
from django.http import JsonResponse, Http404, HttpResponseForbidden
from django.shortcuts import get_object_or_404, render, redirect
from django.urls import reverse, reverse_lazy
from django.utils import timezone
from django.views.decorators.csrf import csrf_exempt, ensure_csrf_cookie
from django.views.decorators.http import require_GET, require_POST
from django.views.generic.edit import DeleteView
from django.views.generic.list import ListView

from quiz import availability
from quiz.attempt_session import (AttemptSession, COLLECTING_INFO, COMPLETED, NOT_STARTED, QUIZ_NOT_FOUND,
                                  UNAVAILABLE, missing_required_fields)
from quiz.definitions import build_quiz_definition, get_quiz_definition, save_quiz_draft
from quiz.exceptions import InvalidInput, NotFound, QuizMakerError, Unauthorized
from quiz.forms import QuizForm
from quiz.models import Quiz
from quiz.schemas import AttemptSubmission, QuizSettings, default_participant_fields, parse_or_invalid
from results.recorder import record_attempt

logger = logging.getLogger("quiz_maker")

ATTEMPTS_SESSION_KEY = "quiz_attempts"

UNAVAILABLE_RESPONSES = {
    QUIZ_NOT_FOUND: ("Quiz not found", 404),
    availability.NOT_STARTED: ("This quiz has not started yet.", 403),
    availability.ENDED: ("This quiz has ended.", 403),
}


def _json_body(request):
    try:
        data = json.loads(request.body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.error(e)
        raise InvalidInput("Invalid JSON")

    if not isinstance(data, dict):
        raise InvalidInput("Expected a JSON object.")
    return data


def _owned_quiz(request, pk, action):
    quiz = get_object_or_404(Quiz, pk=pk)
    if quiz.user_id != request.user.pk:
        logger.warning(f"User {request.user.pk} tried to {action} quiz {pk}")
        raise Unauthorized(f"You are not allowed to {action} this quiz.")
    return quiz


# Author views


class QuizListView(LoginRequiredMixin, ListView):
    model = Quiz
    paginate_by = 10
    template_name = 'quiz/index.html'
    context_object_name = 'quizzes'

    def get_queryset(self):
        return (
            Quiz.objects.filter(user=self.request.user)
            .annotate(question_count=Count('questions', distinct=True),
                      result_count=Count('results', distinct=True))
            .order_by('-created_at', '-id')
        )


@login_required(login_url='login')
def get_quiz_data(request, pk):
    try:
        quiz = _owned_quiz(request, pk, "access")
    except Unauthorized as e:
        return HttpResponseForbidden(e.message)

    context = {
        'quiz': quiz,
        'questions': quiz.questions.all(),
        'participant_fields': quiz.participant_fields.all(),
        'result_count': quiz.results.count(),
        'share_url': request.build_absolute_uri(reverse('quiz_definition', args=[quiz.pk])),
        'availability': availability.check_availability(quiz, timezone.now()),
    }

    return render(request, 'quiz/quiz_detail.html', context)


def _starter_quiz_json():
    starter = {
        "title": "",
        "description": "",
        "settings": QuizSettings().model_dump(by_alias=True, mode="json"),
        "questions": [],
        "participantFields": [
            participant_field.model_dump(by_alias=True, mode="json", exclude={"id"})
            for participant_field in default_participant_fields()
        ],
    }
    return json.dumps(starter, indent=2)


@login_required(login_url='login')
def create_quiz(request):
    if request.method != 'GET':
        return HttpResponseForbidden("Use the save endpoint to create a quiz.")

    form = QuizForm(initial={'whole_quiz': _starter_quiz_json()})
    return render(request, "quiz/create_quiz.html", {"form": form, "action": reverse("save_quiz")})


def _save_from_form(request, quiz=None):
    form = QuizForm(request.POST)

    if not form.is_valid():
        form_errors = {field: list(errors) for field, errors in form.errors.items()}
        return JsonResponse({"error": "Validation error", "form_errors": form_errors}, status=400)

    draft = form.cleaned_data['whole_quiz']

    duplicates = Quiz.objects.filter(user=request.user, title=draft.title)
    if quiz is not None:
        duplicates = duplicates.exclude(pk=quiz.pk)
    if duplicates.exists():
        return JsonResponse({"error": "You already have a quiz with this title."}, status=400)

    try:
        saved = save_quiz_draft(draft, request.user, quiz=quiz)
    except IntegrityError as e:
        logger.error(e)
        messages.error(request, f"An error occurred: {str(e)}")
        return JsonResponse({"error": "Error when saving quiz"}, status=500)

    messages.success(request, "Quiz saved successfully!")
    return redirect("q_detail", pk=saved.pk)


@login_required(login_url='login')
@require_POST
def save_quiz(request):
    return _save_from_form(request)


@login_required(login_url='login')
def update_quiz(request, pk):
    try:
        quiz = _owned_quiz(request, pk, "update")
    except Unauthorized as e:
        return HttpResponseForbidden(e.message)

    if request.method == 'POST':
        return _save_from_form(request, quiz=quiz)

    definition = build_quiz_definition(quiz)
    current = definition.model_dump(by_alias=True, mode="json", exclude={'id'})
    form = QuizForm(initial={'whole_quiz': json.dumps(current, indent=2)})
    return render(request, "quiz/create_quiz.html",
                  {"form": form, "quiz": quiz, "action": reverse("update_quiz", args=[quiz.pk])})


@login_required(login_url='login')
@require_GET
def preview_quiz(request, pk):
    try:
        quiz = _owned_quiz(request, pk, "preview")
    except Unauthorized as e:
        return HttpResponseForbidden(e.message)

    definition = build_quiz_definition(quiz)
    return JsonResponse(definition.model_dump(by_alias=True, mode="json"))


class QuizDeleteView(LoginRequiredMixin, DeleteView):
    model = Quiz
    success_url = reverse_lazy("index")
    template_name = "quiz/confirm_delete.html"

    def get_queryset(self):
        """
        Limit the queryset to quizzes owned by the logged-in user.
        """
        return Quiz.objects.filter(user=self.request.user)

    def handle_no_permission(self):
        raise Http404("You do not have permission to delete this quiz.")

    def form_valid(self, form):
        logger.info(f"Deleting quiz {self.object.pk} with its results")
        messages.success(self.request, "Quiz deleted successfully")
        return super().form_valid(form)


# Participant views


@require_GET
def quiz_definition(request, pk):
    try:
        definition = get_quiz_definition(pk)
    except NotFound as e:
        logger.error(e)
        return JsonResponse({"error": "Quiz not found"}, status=404)

    return JsonResponse(definition.model_dump(by_alias=True, mode="json"))


@csrf_exempt
@require_POST
def submit_quiz_result(request, pk):
    """
    Store a finished attempt sent by the participant's client.

    Attempts already in progress when the window closes are still accepted;
    submissions before the start date are rejected.
    """
    try:
        submission = parse_or_invalid(AttemptSubmission, _json_body(request))

        quiz = Quiz.objects.filter(pk=pk).first()
        if quiz is None:
            raise NotFound(f"Quiz with ID {pk} not found")

        window = availability.check_availability(quiz, timezone.now())
        if window.reason == availability.NOT_STARTED:
            message, status = UNAVAILABLE_RESPONSES[window.reason]
            return JsonResponse({"error": message, "reason": window.reason}, status=status)
        if window.reason == availability.ENDED:
            logger.info(f"Accepting submission for quiz {pk} after its end date")

        participant_info = dict(submission.participant_info)
        participant_info["name"] = submission.participant_name
        participant_info["email"] = submission.participant_email

        recorded = record_attempt(
            quiz_id=pk,
            participant_info=participant_info,
            answers=submission.answers,
            client_score=submission.score,
            submission_token=submission.submission_token,
        )
    except QuizMakerError as e:
        logger.error(e)
        return JsonResponse({"error": e.message}, status=e.status_code)

    return JsonResponse(recorded.to_dict(), status=200 if recorded.replayed else 201)


def _new_attempt(pk):
    return AttemptSession(pk, get_quiz_definition, record_attempt)


def _load_attempt(request, pk):
    stored = request.session.get(ATTEMPTS_SESSION_KEY, {}).get(str(pk))
    if not stored:
        return _new_attempt(pk)
    return AttemptSession.from_dict(stored, get_quiz_definition, record_attempt)


def _attempt_response(request, attempt, status=200, error=None):
    attempts = request.session.get(ATTEMPTS_SESSION_KEY, {})
    attempts[str(attempt.quiz_id)] = attempt.to_dict()
    request.session[ATTEMPTS_SESSION_KEY] = attempts

    data = {"quizId": attempt.quiz_id, "state": attempt.state.to_dict()}
    if attempt.definition is not None:
        data["quiz"] = attempt.definition.model_dump(by_alias=True, mode="json")
        if attempt.status == COLLECTING_INFO:
            data["missingFields"] = missing_required_fields(attempt.definition, attempt.state.participant_info)
    if error:
        data["error"] = error

    return JsonResponse(data, status=status)


def _unavailable_response(request, attempt):
    message, status = UNAVAILABLE_RESPONSES[attempt.state.reason]
    return _attempt_response(request, attempt, status=status, error=message)


@ensure_csrf_cookie
@require_GET
def attempt_state(request, pk):
    attempt = _load_attempt(request, pk)
    attempt.advance_clock()
    return _attempt_response(request, attempt)


@require_POST
def start_attempt(request, pk):
    attempt = _load_attempt(request, pk)
    if attempt.status == UNAVAILABLE:
        # opening the quiz again checks the window again
        attempt = _new_attempt(pk)

    attempt.start()
    if attempt.status == UNAVAILABLE:
        return _unavailable_response(request, attempt)
    return _attempt_response(request, attempt)


@require_POST
def enter_participant_info(request, pk):
    attempt = _load_attempt(request, pk)
    try:
        values = _json_body(request).get("participantInfo")
        if not isinstance(values, dict):
            raise InvalidInput("participantInfo must be an object.")
        attempt.enter_participant_info(values)
    except QuizMakerError as e:
        return _attempt_response(request, attempt, status=e.status_code, error=e.message)

    if attempt.status == COLLECTING_INFO:
        return _attempt_response(request, attempt, status=400, error="Please fill in all required fields")
    return _attempt_response(request, attempt)


@require_POST
def answer_question(request, pk):
    attempt = _load_attempt(request, pk)
    try:
        body = _json_body(request)
        question_id = body.get("questionId")
        if isinstance(question_id, bool) or not isinstance(question_id, int):
            raise InvalidInput("questionId must be an integer.")
        attempt.answer(question_id, body.get("answer"))
    except QuizMakerError as e:
        return _attempt_response(request, attempt, status=e.status_code, error=e.message)

    return _attempt_response(request, attempt)


@require_POST
def submit_attempt(request, pk):
    attempt = _load_attempt(request, pk)
    try:
        if attempt.status in (NOT_STARTED, COLLECTING_INFO, UNAVAILABLE):
            raise InvalidInput("This attempt has no answers to submit yet.")
        attempt.submit()
    except QuizMakerError as e:
        return _attempt_response(request, attempt, status=e.status_code, error=e.message)

    if attempt.status == COMPLETED and not attempt.state.saved:
        # the score stands, only storing it failed
        return _attempt_response(request, attempt, error=attempt.state.persistence_error)
    return _attempt_response(request, attempt)


@require_POST
def retake_attempt(request, pk):
    attempt = _load_attempt(request, pk)
    try:
        attempt.retake()
    except QuizMakerError as e:
        return _attempt_response(request, attempt, status=e.status_code, error=e.message)

    if attempt.status == UNAVAILABLE:
        return _unavailable_response(request, attempt)
    return _attempt_response(request, attempt)
