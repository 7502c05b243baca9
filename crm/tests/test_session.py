import unittest

from crm.errors import AuthenticationError, NotAuthenticatedError
from crm.identity import InMemoryIdentityProvider
from crm.session import (
    DASHBOARD_PATH,
    FORGOT_PASSWORD_PATH,
    LOGIN_PATH,
    REGISTER_PATH,
    AuthOutcome,
    SessionManager,
    ViewNavigator,
)

EMAIL = "user@example.com"
PASSWORD = "password123"
REDIRECT = "http://localhost:8000/auth/callback"


class SessionManagerTests(unittest.TestCase):
    def setUp(self):
        self.provider = InMemoryIdentityProvider()
        self.navigator = ViewNavigator()
        self.session = SessionManager(
            self.provider, self.navigator, redirect_url=REDIRECT
        )
        self.session.start()
        self.addCleanup(self.session.close)

    def _register_confirmed(self):
        self.session.sign_up(EMAIL, PASSWORD)
        self.provider.confirm_email(EMAIL)

    def test_start_loads_empty_session(self):
        self.assertTrue(self.session.is_started)
        self.assertFalse(self.session.loading)
        self.assertIsNone(self.session.user)
        self.assertFalse(self.session.is_authenticated)
        with self.assertRaises(NotAuthenticatedError):
            self.session.require_user()

    def test_sign_up_requires_email_confirmation(self):
        outcome = self.session.sign_up(EMAIL, PASSWORD)

        self.assertEqual(outcome, AuthOutcome.CHECK_EMAIL)
        self.assertFalse(self.session.is_email_confirmed)
        self.assertIsNone(self.session.user)
        self.assertEqual(self.provider.outbox, [("signup", EMAIL, REDIRECT)])

    def test_sign_in_before_confirmation_is_not_an_error(self):
        self.session.sign_up(EMAIL, PASSWORD)

        with self.assertLogs("crm.session", level="WARNING"):
            outcome = self.session.sign_in(EMAIL, PASSWORD)

        self.assertEqual(outcome, AuthOutcome.EMAIL_UNCONFIRMED)
        self.assertFalse(self.session.is_email_confirmed)
        self.assertIsNone(self.session.user)

    def test_sign_in_redirects_from_login_to_dashboard(self):
        self._register_confirmed()
        self.navigator.visit(LOGIN_PATH)

        outcome = self.session.sign_in(EMAIL, PASSWORD)

        self.assertEqual(outcome, AuthOutcome.SIGNED_IN)
        self.assertTrue(self.session.is_email_confirmed)
        self.assertEqual(self.session.user.email, EMAIL)
        self.assertEqual(self.navigator.current_path, DASHBOARD_PATH)

    def test_sign_in_elsewhere_keeps_current_view(self):
        self._register_confirmed()
        self.navigator.visit("/contacts")

        self.session.sign_in(EMAIL, PASSWORD)

        self.assertEqual(self.navigator.current_path, "/contacts")
        self.assertEqual(self.navigator.history, [])

    def test_bad_credentials_raise(self):
        self._register_confirmed()
        with self.assertLogs("crm.session", level="ERROR"):
            with self.assertRaises(AuthenticationError) as ctx:
                self.session.sign_in(EMAIL, "wrong-password")
        self.assertEqual(ctx.exception.message, "Invalid login credentials")
        self.assertIsNone(self.session.user)

    def test_duplicate_sign_up_raises(self):
        self.session.sign_up(EMAIL, PASSWORD)
        with self.assertLogs("crm.session", level="ERROR"):
            with self.assertRaises(AuthenticationError):
                self.session.sign_up(EMAIL, PASSWORD)

    def test_sign_out_navigates_to_login(self):
        self._register_confirmed()
        self.session.sign_in(EMAIL, PASSWORD)
        self.navigator.visit("/contacts")

        self.session.sign_out()

        self.assertIsNone(self.session.user)
        self.assertEqual(self.navigator.current_path, LOGIN_PATH)

    def test_sign_out_on_public_view_stays_put(self):
        self._register_confirmed()
        self.session.sign_in(EMAIL, PASSWORD)
        self.navigator.visit(FORGOT_PASSWORD_PATH)

        self.session.sign_out()

        self.assertEqual(self.navigator.current_path, FORGOT_PASSWORD_PATH)

    def test_auto_confirmed_sign_up_signs_in(self):
        provider = InMemoryIdentityProvider(require_confirmation=False)
        navigator = ViewNavigator(current_path=REGISTER_PATH)
        with SessionManager(provider, navigator) as session:
            outcome = session.sign_up(EMAIL, PASSWORD)

            self.assertEqual(outcome, AuthOutcome.SIGNED_UP)
            self.assertEqual(session.user.email, EMAIL)
            self.assertEqual(navigator.current_path, DASHBOARD_PATH)
        self.assertFalse(session.is_started)
        self.assertEqual(provider.listeners, {})

    def test_start_picks_up_existing_session(self):
        provider = InMemoryIdentityProvider(require_confirmation=False)
        provider.sign_up(EMAIL, PASSWORD)

        with SessionManager(provider) as session:
            self.assertEqual(session.user.email, EMAIL)
            self.assertTrue(session.is_email_confirmed)

    def test_reset_password_and_resend_use_redirect(self):
        self.session.reset_password(EMAIL)
        self.session.resend_confirmation(EMAIL)

        self.assertEqual(
            self.provider.outbox,
            [("recovery", EMAIL, REDIRECT), ("signup", EMAIL, REDIRECT)],
        )

    def test_change_password_requires_user(self):
        with self.assertRaises(NotAuthenticatedError):
            self.session.change_password("new-password")

        self._register_confirmed()
        self.session.sign_in(EMAIL, PASSWORD)
        self.session.change_password("new-password")
        self.session.sign_out()

        self.assertEqual(
            self.session.sign_in(EMAIL, "new-password"), AuthOutcome.SIGNED_IN
        )


if __name__ == "__main__":
    unittest.main()
