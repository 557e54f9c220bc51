from django.contrib.auth import get_user_model
from django.contrib.auth.backends import ModelBackend

User = get_user_model()


class EmailBackend(ModelBackend):
    """
    Quiz authors sign in with the email they signed up with. Accounts made
    through the admin can still use their username.
    """

    def authenticate(self, request, username=None, password=None, **kwargs):
        if username is None:
            username = kwargs.get(User.USERNAME_FIELD)
        if not username or password is None:
            return None

        username = username.strip()
        user = User.objects.filter(email__iexact=username).order_by('pk').first()
        if user is None:
            user = User.objects.filter(username=username).first()
        if user is None:
            return None

        if user.check_password(password) and self.user_can_authenticate(user):
            return user
        return None
