from django.contrib.auth.mixins import LoginRequiredMixin
from django.db.models import Avg
from django.views.generic.base import TemplateView

from quiz.models import Quiz
from results.models import QuizResult


class DashboardView(LoginRequiredMixin, TemplateView):
    template_name = 'dashboard.html'

    def get_context_data(self, **kwargs):
        context = super().get_context_data(**kwargs)

        quizzes = Quiz.objects.filter(user=self.request.user)
        results = QuizResult.objects.filter(quiz__user=self.request.user)
        average_score = results.aggregate(average=Avg('score'))['average']

        context['quiz_count'] = quizzes.count()
        context['result_count'] = results.count()
        # half up, like quiz scores
        context['average_score'] = int(average_score + 0.5) if average_score is not None else None
        context['recent_results'] = results.select_related('quiz').order_by('-submitted_at', '-id')[:5]
        return context
