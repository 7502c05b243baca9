import unittest
from types import SimpleNamespace
from unittest.mock import MagicMock

from crm.backend import (
    CONTACT_TAGS_TABLE,
    CONTACTS_TABLE,
    SupabaseTableBackend,
    eq,
    escape_like,
    ilike,
    in_,
    render_postgrest_filter,
)
from crm.identity import SupabaseIdentityProvider, user_from_supabase

BUILDER_METHODS = ("select", "eq", "ilike", "in_", "or_", "order", "limit",
                   "insert", "update", "delete")


def _mock_client(data=None):
    builder = MagicMock()
    for name in BUILDER_METHODS:
        getattr(builder, name).return_value = builder
    builder.execute.return_value = SimpleNamespace(data=data or [])
    client = MagicMock()
    client.table.return_value = builder
    return client, builder


def _supabase_user(confirmed=True):
    return SimpleNamespace(
        id="user-1",
        email="user@example.com",
        email_confirmed_at="2024-01-01T00:00:00Z" if confirmed else None,
    )


class PostgrestRenderingTests(unittest.TestCase):
    def test_plain_values(self):
        self.assertEqual(
            render_postgrest_filter(ilike("first_name", "%jo%")),
            "first_name.ilike.%jo%",
        )
        self.assertEqual(render_postgrest_filter(eq("status", "Lead")), "status.eq.Lead")

    def test_reserved_characters_are_quoted(self):
        self.assertEqual(
            render_postgrest_filter(ilike("company", "%Smith, Jones%")),
            'company.ilike."%Smith, Jones%"',
        )

    def test_escaped_wildcards_survive_quoting(self):
        pattern = f"%{escape_like('a_b')}%"
        self.assertEqual(
            render_postgrest_filter(ilike("company", pattern)),
            'company.ilike."%a\\\\_b%"',
        )

    def test_in_list(self):
        self.assertEqual(render_postgrest_filter(in_("id", ["a", "b"])), "id.in.(a,b)")


class SupabaseTableBackendTests(unittest.TestCase):
    def test_select_builds_query(self):
        client, builder = _mock_client(data=[{"id": "c1"}])
        backend = SupabaseTableBackend(client)

        rows = backend.select(
            CONTACTS_TABLE,
            filters=[eq("user_id", "u1"), eq("status", "Lead")],
            any_of=[ilike("first_name", "%jo%"), ilike("company", "%jo%")],
            order_by="created_at",
            descending=True,
        )

        self.assertEqual(rows, [{"id": "c1"}])
        client.table.assert_called_once_with(CONTACTS_TABLE)
        builder.select.assert_called_once_with("*")
        builder.eq.assert_any_call("user_id", "u1")
        builder.eq.assert_any_call("status", "Lead")
        builder.or_.assert_called_once_with("first_name.ilike.%jo%,company.ilike.%jo%")
        builder.order.assert_called_once_with("created_at", desc=True)
        builder.limit.assert_not_called()

    def test_insert_returns_first_row(self):
        client, builder = _mock_client(data=[{"id": "c1", "first_name": "Jane"}])
        backend = SupabaseTableBackend(client)

        stored = backend.insert(CONTACTS_TABLE, {"first_name": "Jane"})

        builder.insert.assert_called_once_with({"first_name": "Jane"})
        self.assertEqual(stored["id"], "c1")

    def test_delete_applies_every_filter(self):
        client, builder = _mock_client()
        backend = SupabaseTableBackend(client)

        backend.delete(CONTACT_TAGS_TABLE, filters=[eq("contact_id", "c1"), eq("tag_id", "t1")])

        builder.delete.assert_called_once_with()
        builder.eq.assert_any_call("contact_id", "c1")
        builder.eq.assert_any_call("tag_id", "t1")
        builder.execute.assert_called_once()


class SupabaseIdentityProviderTests(unittest.TestCase):
    def test_user_mapping(self):
        self.assertTrue(user_from_supabase(_supabase_user()).email_confirmed)
        self.assertFalse(user_from_supabase(_supabase_user(False)).email_confirmed)
        self.assertIsNone(user_from_supabase(None))

    def test_sign_up_passes_redirect(self):
        client = MagicMock()
        client.auth.sign_up.return_value = SimpleNamespace(
            user=_supabase_user(confirmed=False), session=None
        )
        provider = SupabaseIdentityProvider(client)

        result = provider.sign_up(
            "user@example.com", "password123", redirect_to="http://app/auth/callback"
        )

        client.auth.sign_up.assert_called_once_with(
            {
                "email": "user@example.com",
                "password": "password123",
                "options": {"email_redirect_to": "http://app/auth/callback"},
            }
        )
        self.assertIsNone(result.session)
        self.assertFalse(result.user.email_confirmed)

    def test_auth_state_change_normalises_session(self):
        client = MagicMock()
        provider = SupabaseIdentityProvider(client)
        received = []

        provider.on_auth_state_change(lambda event, session: received.append((event, session)))
        forward = client.auth.on_auth_state_change.call_args[0][0]
        forward(
            "SIGNED_IN",
            SimpleNamespace(access_token="token", user=_supabase_user()),
        )
        forward("SIGNED_OUT", None)

        self.assertEqual(received[0][0], "SIGNED_IN")
        self.assertEqual(received[0][1].user.id, "user-1")
        self.assertEqual(received[1], ("SIGNED_OUT", None))


if __name__ == "__main__":
    unittest.main()
