from django.contrib import admin
from django.db.models import Count

from quiz.models import Quiz, Question, ParticipantField


class QuestionInline(admin.StackedInline):
    model = Question
    extra = 0


class ParticipantFieldInline(admin.TabularInline):
    model = ParticipantField
    extra = 0


class QuizAdmin(admin.ModelAdmin):
    list_display = ('title', 'user', 'allow_retake', 'time_limit', 'start_date', 'end_date')
    list_filter = ('user', 'allow_retake')
    search_fields = ('title', 'user__username')
    inlines = [QuestionInline, ParticipantFieldInline]

    change_list_template = "admin/quiz_changelist.html"

    def changelist_view(self, request, extra_context=None):
        total_quizzes = Quiz.objects.count()
        quizzes_per_user = (
            Quiz.objects.values('user__username')
            .annotate(count=Count('id'))
            .order_by('-count')
        )

        extra_context = extra_context or {}
        extra_context['total_quizzes'] = total_quizzes
        extra_context['quizzes_per_user'] = quizzes_per_user

        return super().changelist_view(request, extra_context=extra_context)


admin.site.register(Quiz, QuizAdmin)
admin.site.register(Question)
