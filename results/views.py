import logging

from django.contrib import messages
from django.contrib.auth.decorators import login_required
from django.contrib.auth.mixins import LoginRequiredMixin
from django.http import HttpResponseForbidden, HttpResponseRedirect, Http404
from django.shortcuts import get_object_or_404, render, redirect
from django.urls import reverse_lazy
from django.views.generic.edit import DeleteView
from django.views.generic.list import ListView

from quiz.exceptions import NotFound, PersistenceFailure
from results.models import QuizResult, ParticipantAnswer
from results.recorder import delete_attempt

logger = logging.getLogger("quiz_maker")


class QuizResultListView(LoginRequiredMixin, ListView):
    model = QuizResult
    paginate_by = 10
    template_name = 'results/results_index.html'
    context_object_name = 'results'

    def get_queryset(self):
        # only results for quizzes the logged-in user authored
        results = QuizResult.objects.filter(quiz__user=self.request.user).select_related('quiz')

        quiz_id = self.request.GET.get('quiz')
        if quiz_id and quiz_id.isdigit():
            results = results.filter(quiz_id=int(quiz_id))

        return results.order_by('-submitted_at', '-id')


@login_required(login_url='login')
def get_participant_answers(request, pk):
    quiz_result = get_object_or_404(QuizResult.objects.select_related('quiz'), pk=pk)

    if quiz_result.quiz.user != request.user:
        return HttpResponseForbidden("You are not allowed to access these results.")

    answers = (
        ParticipantAnswer.objects.filter(quiz_result=quiz_result)
        .select_related('question')
        .order_by('question__question_number', 'question__id')
    )

    answer_data = [
        {
            'question': answer.question,
            'participant_answer': answer.participant_answer,
            'correct': answer.is_correct,
        }
        for answer in answers
    ]

    context = {
        'quiz_result': quiz_result,
        'quiz': quiz_result.quiz,
        'answer_data': answer_data,
    }

    return render(request, 'results/result_detail.html', context)


class QuizResultDeleteView(LoginRequiredMixin, DeleteView):
    model = QuizResult
    success_url = reverse_lazy("results_index")
    template_name = "results/confirm_result_delete.html"

    def get_queryset(self):
        return QuizResult.objects.filter(quiz__user=self.request.user).select_related('quiz')

    def handle_no_permission(self):
        raise Http404("You do not have permission to delete this result.")

    def form_valid(self, form):
        # the result and its answers go in one transaction
        try:
            delete_attempt(self.object.pk, owner=self.request.user)
        except NotFound as e:
            raise Http404(e.message)
        except PersistenceFailure as e:
            logger.error(e)
            messages.error(self.request, e.message)
            return redirect("results_index")

        messages.success(self.request, "Quiz result deleted successfully")
        return HttpResponseRedirect(self.get_success_url())

    def delete(self, request, *args, **kwargs):
        self.object = self.get_object()
        return self.form_valid(None)
