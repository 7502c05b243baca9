import unittest

from sqlalchemy.exc import IntegrityError

from crm.backend import (
    ACTIVITIES_TABLE,
    CONTACT_TAGS_TABLE,
    CONTACTS_TABLE,
    TAGS_TABLE,
    SqlTableBackend,
    eq,
    escape_like,
    ilike,
    in_,
    is_unique_violation,
)


class SqlTableBackendTests(unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL to exercise the local table backend.
    """

    def setUp(self):
        self.backend = SqlTableBackend("sqlite+pysqlite:///:memory:")

    def _contact(self, first, last, **extra):
        row = {"user_id": "user-1", "first_name": first, "last_name": last}
        row.update(extra)
        return self.backend.insert(CONTACTS_TABLE, row)

    def test_insert_fills_defaults(self):
        stored = self._contact("Jane", "Doe")
        self.assertTrue(stored["id"])
        self.assertEqual(stored["status"], "Lead")
        self.assertIsNotNone(stored["created_at"])
        self.assertIsNotNone(stored["updated_at"])

    def test_select_any_of_matches_case_insensitively(self):
        self._contact("Jane", "Doe", company="Acme Corp")
        self._contact("John", "Smith", email="john@ACME.io")
        self._contact("Ada", "Lovelace", company="Engines")

        rows = self.backend.select(
            CONTACTS_TABLE,
            filters=[eq("user_id", "user-1")],
            any_of=[ilike("company", "%acme%"), ilike("email", "%acme%")],
        )
        self.assertEqual(
            sorted(row["first_name"] for row in rows), ["Jane", "John"]
        )

    def test_select_in_and_order(self):
        a = self.backend.insert(TAGS_TABLE, {"user_id": "u", "name": "beta"})
        b = self.backend.insert(TAGS_TABLE, {"user_id": "u", "name": "alpha"})
        self.backend.insert(TAGS_TABLE, {"user_id": "u", "name": "gamma"})

        rows = self.backend.select(
            TAGS_TABLE, filters=[in_("id", [a["id"], b["id"]])], order_by="name"
        )
        self.assertEqual([row["name"] for row in rows], ["alpha", "beta"])

        rows = self.backend.select(TAGS_TABLE, order_by="name", descending=True, limit=1)
        self.assertEqual(rows[0]["name"], "gamma")

    def test_update_returns_changed_rows(self):
        stored = self._contact("Jane", "Doe")
        rows = self.backend.update(
            CONTACTS_TABLE, {"status": "Customer"}, filters=[eq("id", stored["id"])]
        )
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["status"], "Customer")

        missing = self.backend.update(
            CONTACTS_TABLE, {"status": "Customer"}, filters=[eq("id", "nope")]
        )
        self.assertEqual(missing, [])

    def test_delete_cascades_to_children(self):
        contact = self._contact("Jane", "Doe")
        tag = self.backend.insert(TAGS_TABLE, {"user_id": "user-1", "name": "vip"})
        self.backend.insert(
            CONTACT_TAGS_TABLE, {"contact_id": contact["id"], "tag_id": tag["id"]}
        )
        self.backend.insert(
            ACTIVITIES_TABLE,
            {
                "contact_id": contact["id"],
                "user_id": "user-1",
                "type": "Call",
                "description": "Intro call",
            },
        )

        self.backend.delete(CONTACTS_TABLE, filters=[eq("id", contact["id"])])

        self.assertEqual(self.backend.select(CONTACTS_TABLE), [])
        self.assertEqual(self.backend.select(ACTIVITIES_TABLE), [])
        self.assertEqual(self.backend.select(CONTACT_TAGS_TABLE), [])
        self.assertEqual(len(self.backend.select(TAGS_TABLE)), 1)

    def test_delete_of_missing_row_is_a_no_op(self):
        self.backend.delete(CONTACTS_TABLE, filters=[eq("id", "missing")])

    def test_delete_requires_filters(self):
        with self.assertRaises(ValueError):
            self.backend.delete(CONTACTS_TABLE, filters=[])

    def test_contact_tag_pair_is_unique(self):
        contact = self._contact("Jane", "Doe")
        tag = self.backend.insert(TAGS_TABLE, {"user_id": "user-1", "name": "vip"})
        link = {"contact_id": contact["id"], "tag_id": tag["id"]}
        self.backend.insert(CONTACT_TAGS_TABLE, link)

        with self.assertRaises(IntegrityError) as ctx:
            self.backend.insert(CONTACT_TAGS_TABLE, link)
        self.assertTrue(is_unique_violation(ctx.exception))

    def test_escaped_like_pattern_matches_literally(self):
        self._contact("Jane", "Doe")
        self._contact("Bob", "Stone", company="snake_case Ltd")

        rows = self.backend.select(
            CONTACTS_TABLE,
            any_of=[ilike("company", f"%{escape_like('_')}%")],
        )

        self.assertEqual([row["first_name"] for row in rows], ["Bob"])
        self.assertEqual(escape_like("50%_off\\"), "50\\%\\_off\\\\")

    def test_unknown_table(self):
        with self.assertRaises(ValueError):
            self.backend.select("deals")


if __name__ == "__main__":
    unittest.main()
