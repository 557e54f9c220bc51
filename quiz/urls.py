from django.urls import path

from . import views

urlpatterns = [
    path("", views.QuizListView.as_view(), name="index"),
    path('<int:pk>', views.get_quiz_data, name='q_detail'),
    path('create', views.create_quiz, name='create_quiz'),
    path('save', views.save_quiz, name='save_quiz'),
    path('<int:pk>/update', views.update_quiz, name='update_quiz'),
    path('preview/<int:pk>', views.preview_quiz, name='preview_quiz'),
    path('delete/<int:pk>', views.QuizDeleteView.as_view(), name='delete_quiz'),

    # participant facing, no login
    path('<int:pk>/definition', views.quiz_definition, name='quiz_definition'),
    path('<int:pk>/submit', views.submit_quiz_result, name='submit_quiz_result'),
    path('<int:pk>/attempt', views.attempt_state, name='attempt_state'),
    path('<int:pk>/attempt/start', views.start_attempt, name='start_attempt'),
    path('<int:pk>/attempt/participant', views.enter_participant_info, name='attempt_participant'),
    path('<int:pk>/attempt/answer', views.answer_question, name='attempt_answer'),
    path('<int:pk>/attempt/submit', views.submit_attempt, name='attempt_submit'),
    path('<int:pk>/attempt/retake', views.retake_attempt, name='attempt_retake'),
]
