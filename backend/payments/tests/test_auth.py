import time
from unittest.mock import patch

import jwt
from django.test import SimpleTestCase, TestCase, override_settings
from rest_framework.exceptions import AuthenticationFailed, PermissionDenied
from rest_framework.test import APIRequestFactory

from payments.models import Profile
from payments.tools.auth import TokenConfigurationError, decode_access_token
from payments.tools.auth.authentication import BearerTokenAuthentication
from payments.views_modules.helpers import sync_profile_from_claims


class BearerTokenAuthenticationTests(SimpleTestCase):
    def setUp(self):
        self.factory = APIRequestFactory(enforce_csrf_checks=True)
        self.authentication = BearerTokenAuthentication()

    def test_returns_none_without_token(self):
        request = self.factory.get("/api/me/")
        self.assertIsNone(self.authentication.authenticate(request))

    def test_ignores_other_authorization_schemes(self):
        request = self.factory.get("/api/me/", HTTP_AUTHORIZATION="Basic dXNlcjpwYXNz")
        self.assertIsNone(self.authentication.authenticate(request))

    @patch("payments.tools.auth.authentication.decode_access_token")
    def test_reads_bearer_token(self, decode_token):
        decode_token.return_value = {"sub": "user_123", "email": "person@example.com"}
        request = self.factory.get(
            "/api/me/",
            HTTP_AUTHORIZATION="Bearer test-token",
        )
        user, claims = self.authentication.authenticate(request)

        self.assertEqual(user.external_id, "user_123")
        self.assertTrue(user.is_authenticated)
        self.assertEqual(claims["email"], "person@example.com")
        self.assertEqual(request.auth_token, "test-token")

    @patch("payments.tools.auth.authentication.decode_access_token")
    def test_reads_session_cookie_token(self, decode_token):
        decode_token.return_value = {"sub": "user_cookie"}
        request = self.factory.get("/api/me/")
        request.COOKIES["__session"] = "cookie-token"
        user, _ = self.authentication.authenticate(request)

        self.assertEqual(user.external_id, "user_cookie")
        self.assertEqual(request.auth_token, "cookie-token")

    @patch("payments.tools.auth.authentication.decode_access_token")
    def test_cookie_auth_requires_csrf_for_unsafe_method(self, decode_token):
        decode_token.return_value = {"sub": "user_cookie"}
        request = self.factory.post("/api/checkout/order/", data={}, format="json")
        request.COOKIES["__session"] = "cookie-token"

        with self.assertRaises(PermissionDenied):
            self.authentication.authenticate(request)

    @patch("payments.tools.auth.authentication.decode_access_token")
    def test_cookie_auth_accepts_valid_csrf_for_unsafe_method(self, decode_token):
        decode_token.return_value = {"sub": "user_cookie"}
        csrf_token = "a" * 32
        request = self.factory.post(
            "/api/checkout/order/",
            data={},
            format="json",
            HTTP_X_CSRFTOKEN=csrf_token,
        )
        request.COOKIES["__session"] = "cookie-token"
        request.COOKIES["csrftoken"] = csrf_token

        user, _ = self.authentication.authenticate(request)
        self.assertEqual(user.external_id, "user_cookie")

    def test_invalid_authorization_header_missing_token(self):
        request = self.factory.get(
            "/api/me/",
            HTTP_AUTHORIZATION="Bearer",
        )
        with self.assertRaises(AuthenticationFailed):
            self.authentication.authenticate(request)

    def test_authenticate_header_advertises_bearer(self):
        request = self.factory.get("/api/me/")
        self.assertEqual(self.authentication.authenticate_header(request), "Bearer")


class DecodeAccessTokenTests(SimpleTestCase):
    def _token(self, **claims):
        payload = {"sub": "user_jwt", "exp": int(time.time()) + 300, **claims}
        return jwt.encode(payload, "unit-test-secret", algorithm="HS256")

    def test_decodes_valid_token(self):
        claims = decode_access_token(self._token(email="jwt@example.com"))
        self.assertEqual(claims["sub"], "user_jwt")
        self.assertEqual(claims["email"], "jwt@example.com")

    def test_rejects_expired_token(self):
        token = self._token(exp=int(time.time()) - 10)
        with self.assertRaisesMessage(AuthenticationFailed, "Token has expired."):
            decode_access_token(token)

    def test_rejects_token_signed_with_other_secret(self):
        token = jwt.encode({"sub": "user_jwt", "exp": int(time.time()) + 300}, "other-secret", algorithm="HS256")
        with self.assertRaises(AuthenticationFailed):
            decode_access_token(token)

    @override_settings(AUTH_TOKEN_AUDIENCE="listener-app")
    def test_enforces_configured_audience(self):
        with self.assertRaises(AuthenticationFailed):
            decode_access_token(self._token(aud="another-app"))
        self.assertEqual(decode_access_token(self._token(aud="listener-app"))["sub"], "user_jwt")

    @override_settings(AUTH_TOKEN_SECRET="")
    def test_missing_secret_is_configuration_error(self):
        with self.assertRaises(TokenConfigurationError):
            decode_access_token("anything")


class ProfileSyncTests(TestCase):
    def test_creates_profile_from_claims(self):
        profile = sync_profile_from_claims(
            {"sub": "user_sync", "email": "sync@example.com", "given_name": "Sam", "family_name": "Lee"}
        )
        self.assertEqual(profile.external_id, "user_sync")
        self.assertEqual(profile.display_name, "Sam Lee")
        self.assertEqual(profile.role, Profile.Role.LISTENER)

    def test_claims_never_change_role(self):
        Profile.objects.create(external_id="user_admin", email="old@example.com", role=Profile.Role.ADMIN)

        profile = sync_profile_from_claims({"sub": "user_admin", "email": "new@example.com", "role": "listener"})

        self.assertEqual(profile.email, "new@example.com")
        self.assertEqual(profile.role, Profile.Role.ADMIN)

    def test_missing_subject_returns_none(self):
        self.assertIsNone(sync_profile_from_claims({"email": "nobody@example.com"}))
