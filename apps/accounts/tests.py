from io import StringIO

from django.core.management import CommandError, call_command
from django.test import TestCase, override_settings
from rest_framework.test import APIClient, APITestCase
from rest_framework import status
from rest_framework.views import APIView

from .models import User, Role
from .permissions import IsAdminRole

PASSWORD = "Str0ng-Passw0rd!"


class UserModelTests(TestCase):
    def test_email_is_normalized(self):
        user = User.objects.create_user(email="Asha@Example.COM", password=PASSWORD)
        self.assertEqual(user.email, "asha@example.com")
        self.assertEqual(user.role, Role.CUSTOMER)
        self.assertFalse(user.is_admin)

    def test_superuser_is_admin(self):
        admin = User.objects.create_superuser(email="root@example.com", password=PASSWORD)
        self.assertTrue(admin.is_staff)
        self.assertEqual(admin.role, Role.ADMIN)
        self.assertTrue(admin.is_admin)

    def test_admin_role_without_staff_flag(self):
        user = User.objects.create_user(email="ops@example.com", password=PASSWORD, role=Role.ADMIN)
        self.assertTrue(user.is_admin)


class AuthAPITests(APITestCase):
    def setUp(self):
        self.client = APIClient()

    def test_register_returns_tokens_and_profile(self):
        resp = self.client.post("/api/auth/register/", {
            "email": "new@example.com",
            "password": PASSWORD,
            "fullName": "New Customer",
        }, format="json")

        self.assertEqual(resp.status_code, status.HTTP_201_CREATED)
        self.assertIn("access", resp.data)
        self.assertIn("refresh", resp.data)
        self.assertEqual(resp.data["user"]["email"], "new@example.com")
        self.assertFalse(resp.data["user"]["isAdmin"])

    def test_register_duplicate_email_rejected(self):
        User.objects.create_user(email="dup@example.com", password=PASSWORD)
        resp = self.client.post("/api/auth/register/", {
            "email": "DUP@example.com",
            "password": PASSWORD,
            "fullName": "Dup",
        }, format="json")
        self.assertEqual(resp.status_code, status.HTTP_400_BAD_REQUEST)

    def test_login_and_me(self):
        User.objects.create_user(email="asha@example.com", password=PASSWORD, full_name="Asha")
        resp = self.client.post("/api/auth/login/", {
            "email": "asha@example.com",
            "password": PASSWORD,
        }, format="json")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        self.assertEqual(resp.data["user"]["fullName"], "Asha")

        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {resp.data['access']}")
        me = self.client.get("/api/auth/me/")
        self.assertEqual(me.status_code, status.HTTP_200_OK)
        self.assertEqual(me.data["email"], "asha@example.com")

    def test_login_wrong_password(self):
        User.objects.create_user(email="asha@example.com", password=PASSWORD)
        resp = self.client.post("/api/auth/login/", {
            "email": "asha@example.com",
            "password": "wrong-password",
        }, format="json")
        self.assertEqual(resp.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_logout_blacklists_refresh(self):
        User.objects.create_user(email="asha@example.com", password=PASSWORD)
        tokens = self.client.post("/api/auth/login/", {
            "email": "asha@example.com", "password": PASSWORD,
        }, format="json").data

        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {tokens['access']}")
        resp = self.client.post("/api/auth/logout/", {"refresh": tokens["refresh"]}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_205_RESET_CONTENT)

        refreshed = self.client.post("/api/auth/token/refresh/", {"refresh": tokens["refresh"]}, format="json")
        self.assertEqual(refreshed.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_me_requires_auth(self):
        resp = self.client.get("/api/auth/me/")
        self.assertEqual(resp.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_update_profile(self):
        user = User.objects.create_user(email="asha@example.com", password=PASSWORD)
        self.client.force_authenticate(user)
        resp = self.client.patch("/api/auth/me/", {"fullName": "Asha Rao", "phoneNumber": "+919876543210"}, format="json")
        self.assertEqual(resp.status_code, status.HTTP_200_OK)
        user.refresh_from_db()
        self.assertEqual(user.full_name, "Asha Rao")


class IsAdminRolePermissionTests(TestCase):
    def _request(self, user):
        class Req:
            pass
        req = Req()
        req.user = user
        return req

    def test_customer_denied_admin_allowed(self):
        customer = User.objects.create_user(email="c@example.com", password=PASSWORD)
        admin = User.objects.create_user(email="a@example.com", password=PASSWORD, role=Role.ADMIN)
        perm = IsAdminRole()
        self.assertFalse(perm.has_permission(self._request(customer), APIView()))
        self.assertTrue(perm.has_permission(self._request(admin), APIView()))


@override_settings(DEBUG=True)
class CreateAdminCommandTests(TestCase):
    def test_creates_admin(self):
        out = StringIO()
        call_command("create_admin", email="Ops@Example.com", password=PASSWORD, stdout=out)

        user = User.objects.get(email="ops@example.com")
        self.assertTrue(user.is_admin)
        self.assertTrue(user.check_password(PASSWORD))
        self.assertIn("Created admin", out.getvalue())

    def test_promotes_existing_customer(self):
        User.objects.create_user(email="asha@example.com", password="old-Passw0rd!")
        call_command("create_admin", email="asha@example.com", password=PASSWORD, stdout=StringIO())

        user = User.objects.get(email="asha@example.com")
        self.assertEqual(user.role, Role.ADMIN)
        self.assertTrue(user.is_staff)
        self.assertTrue(user.check_password(PASSWORD))

    def test_missing_credentials(self):
        with self.assertRaises(CommandError):
            call_command("create_admin", email="", password="", stdout=StringIO())

    @override_settings(DEBUG=False)
    def test_production_lock(self):
        with self.assertRaises(CommandError):
            call_command("create_admin", email="ops@example.com", password=PASSWORD, stdout=StringIO())
