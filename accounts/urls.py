from django.contrib.auth.views import LoginView, LogoutView
from django.urls import path

from accounts.forms import EmailAuthenticationForm
from .views import SignUpView

urlpatterns = [
    path("signup/", SignUpView.as_view(), name="signup"),
    path("login/", LoginView.as_view(
        authentication_form=EmailAuthenticationForm,
        template_name="registration/login.html",
        redirect_authenticated_user=True,
    ), name="login"),
    path("logout/", LogoutView.as_view(), name="logout"),
]
