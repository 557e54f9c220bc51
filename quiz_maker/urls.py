from django.contrib import admin
from django.urls import include, path

from quiz_maker.views import DashboardView

urlpatterns = [
    path("", DashboardView.as_view(), name="home"),
    path("admin/", admin.site.urls),
    path("accounts/", include("accounts.urls")),
    path("quiz/", include("quiz.urls")),
    path("results/", include("results.urls")),
]
