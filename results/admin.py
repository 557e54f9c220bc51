from django.contrib import admin
from django.db.models import Avg, Count

from results.models import QuizResult, ParticipantAnswer


class ParticipantAnswerInline(admin.TabularInline):
    model = ParticipantAnswer
    extra = 0
    readonly_fields = ('question', 'participant_answer')


class QuizResultAdmin(admin.ModelAdmin):
    list_display = ('participant_name', 'participant_email', 'quiz', 'score', 'submitted_at')
    list_filter = ('quiz',)
    search_fields = ('participant_name', 'participant_email', 'quiz__title')
    inlines = [ParticipantAnswerInline]

    change_list_template = "admin/quizresult_changelist.html"

    def changelist_view(self, request, extra_context=None):
        total_results = QuizResult.objects.count()
        results_per_quiz = (
            QuizResult.objects.values('quiz__title')
            .annotate(count=Count('id'), average_score=Avg('score'))
            .order_by('-count')
        )

        extra_context = extra_context or {}
        extra_context['total_results'] = total_results
        extra_context['results_per_quiz'] = results_per_quiz

        return super().changelist_view(request, extra_context=extra_context)


admin.site.register(QuizResult, QuizResultAdmin)
