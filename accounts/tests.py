from django.contrib.auth.models import User
from django.contrib.messages import get_messages
from django.test import TestCase, Client
from django.urls import reverse

from accounts.backends import EmailBackend
from accounts.forms import SignUpForm

SIGNUP_DATA = {
    "name": "Grace Hopper",
    "email": "Grace@Example.com",
    "password1": "compiler-pioneer-1906",
    "password2": "compiler-pioneer-1906",
}


class SignUpTestCase(TestCase):

    @classmethod
    def setUpTestData(cls):
        cls.existing_author = User.objects.create_user(username='ada@example.com', email='ada@example.com',
                                                       password='analytical-engine', first_name='Ada')

    def test_signup_page(self):
        response = self.client.get(reverse("signup"))
        self.assertEqual(response.status_code, 200)
        self.assertTemplateUsed(response, "registration/signup.html")

    def test_signup_signs_the_author_in(self):
        response = self.client.post(reverse("signup"), SIGNUP_DATA)

        self.assertEqual(response.status_code, 302)
        self.assertEqual(response.url, reverse("home"))

        author = User.objects.get(email="grace@example.com")
        self.assertEqual(author.username, "grace@example.com")
        self.assertEqual(author.first_name, "Grace Hopper")
        self.assertTrue(author.is_active)
        self.assertEqual(int(self.client.session["_auth_user_id"]), author.pk)

        messages = [str(message) for message in get_messages(response.wsgi_request)]
        self.assertIn("User created successfully", messages)

    def test_new_author_can_reach_their_quizzes(self):
        self.client.post(reverse("signup"), SIGNUP_DATA)
        response = self.client.get(reverse("index"))
        self.assertEqual(response.status_code, 200)

    def test_signup_existing_email(self):
        response = self.client.post(reverse("signup"), dict(SIGNUP_DATA, email="ADA@example.com"))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.context["form"].errors["email"], ["User already exists"])
        self.assertEqual(User.objects.filter(email__iexact="ada@example.com").count(), 1)
        self.assertNotIn("_auth_user_id", self.client.session)

    def test_signup_requires_name(self):
        form = SignUpForm(data=dict(SIGNUP_DATA, name="   "))
        self.assertFalse(form.is_valid())
        self.assertIn("name", form.errors)

    def test_signup_password_mismatch(self):
        response = self.client.post(reverse("signup"), dict(SIGNUP_DATA, password2="something-else-entirely"))

        self.assertEqual(response.status_code, 200)
        self.assertIn("password2", response.context["form"].errors)
        self.assertFalse(User.objects.filter(email="grace@example.com").exists())


class LoginTestCase(TestCase):

    @classmethod
    def setUpTestData(cls):
        cls.author = User.objects.create_user(username='ada@example.com', email='ada@example.com',
                                              password='analytical-engine')
        cls.admin_user = User.objects.create_user(username='admin', password='admin-password')
        cls.inactive_author = User.objects.create_user(username='old@example.com', email='old@example.com',
                                                       password='retired-account', is_active=False)

    def test_login_with_email(self):
        response = self.client.post(reverse("login"), {
            "username": "Ada@Example.com",
            "password": "analytical-engine",
        })

        self.assertEqual(response.status_code, 302)
        self.assertEqual(response.url, reverse("home"))
        self.assertEqual(int(self.client.session["_auth_user_id"]), LoginTestCase.author.pk)

    def test_login_with_username(self):
        response = self.client.post(reverse("login"), {"username": "admin", "password": "admin-password"})
        self.assertEqual(response.status_code, 302)
        self.assertEqual(int(self.client.session["_auth_user_id"]), LoginTestCase.admin_user.pk)

    def test_login_wrong_password(self):
        response = self.client.post(reverse("login"), {
            "username": "ada@example.com",
            "password": "difference-engine",
        })

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.context["form"].non_field_errors(), ["Invalid credentials"])
        self.assertNotIn("_auth_user_id", self.client.session)

    def test_login_unknown_email(self):
        response = self.client.post(reverse("login"), {
            "username": "nobody@example.com",
            "password": "analytical-engine",
        })
        self.assertEqual(response.status_code, 200)
        self.assertNotIn("_auth_user_id", self.client.session)

    def test_login_inactive_account(self):
        response = self.client.post(reverse("login"), {
            "username": "old@example.com",
            "password": "retired-account",
        })
        self.assertEqual(response.status_code, 200)
        self.assertNotIn("_auth_user_id", self.client.session)

    def test_logged_in_author_skips_login_page(self):
        self.client.force_login(LoginTestCase.author)
        response = self.client.get(reverse("login"))
        self.assertEqual(response.status_code, 302)
        self.assertEqual(response.url, reverse("home"))

    def test_logout(self):
        self.client.force_login(LoginTestCase.author)
        response = self.client.post(reverse("logout"))

        self.assertEqual(response.status_code, 302)
        self.assertEqual(response.url, reverse("login"))
        self.assertNotIn("_auth_user_id", self.client.session)


class EmailBackendTestCase(TestCase):

    @classmethod
    def setUpTestData(cls):
        cls.author = User.objects.create_user(username='ada@example.com', email='ada@example.com',
                                              password='analytical-engine')
        # an admin-made account without an email
        cls.blank_email_user = User.objects.create_user(username='staff', password='staff-password')

    def setUp(self):
        self.backend = EmailBackend()

    def test_authenticate_by_email_ignores_case(self):
        user = self.backend.authenticate(None, username="ADA@example.com ", password="analytical-engine")
        self.assertEqual(user, EmailBackendTestCase.author)

    def test_authenticate_by_username(self):
        user = self.backend.authenticate(None, username="staff", password="staff-password")
        self.assertEqual(user, EmailBackendTestCase.blank_email_user)

    def test_blank_username_never_matches_blank_email(self):
        self.assertIsNone(self.backend.authenticate(None, username="", password="staff-password"))

    def test_missing_credentials(self):
        self.assertIsNone(self.backend.authenticate(None, username=None, password="analytical-engine"))
        self.assertIsNone(self.backend.authenticate(None, username="ada@example.com", password=None))

    def test_wrong_password(self):
        self.assertIsNone(self.backend.authenticate(None, username="ada@example.com", password="nope"))

    def test_get_user(self):
        self.assertEqual(self.backend.get_user(EmailBackendTestCase.author.pk), EmailBackendTestCase.author)
        self.assertIsNone(self.backend.get_user(999999))
