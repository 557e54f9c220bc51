import logging

from django.contrib import messages
from django.contrib.auth import login
from django.urls import reverse_lazy
from django.views.generic.edit import CreateView

from accounts.forms import SignUpForm

logger = logging.getLogger("quiz_maker")


class SignUpView(CreateView):
    form_class = SignUpForm
    success_url = reverse_lazy("home")
    template_name = "registration/signup.html"

    def form_valid(self, form):
        response = super().form_valid(form)
        # new authors are signed in straight away
        login(self.request, self.object, backend="accounts.backends.EmailBackend")
        logger.info(f"Signed up user {self.object.pk}")
        messages.success(self.request, "User created successfully")
        return response
