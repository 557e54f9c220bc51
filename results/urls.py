from django.urls import path

from . import views

urlpatterns = [
    path("", views.QuizResultListView.as_view(), name="results_index"),
    path('<int:pk>/answers', views.get_participant_answers, name='result_answers'),
    path('delete/<int:pk>', views.QuizResultDeleteView.as_view(), name='delete_result'),
]
