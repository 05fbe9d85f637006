import unittest

from shared.errors import ValidationError
from shared.schemas import Employee
from shared.services.identity import ShortIdIndex, employee_for_short_id, short_id


def _emp(doc_id: str, name: str) -> Employee:
    return Employee(id=doc_id, name=name, email=f"{doc_id}@example.com")


class TestShortId(unittest.TestCase):
    def test_first_token_lowercased(self):
        self.assertEqual(short_id("John Smith"), "john")
        self.assertEqual(short_id("Sarah Johnson"), "sarah")
        self.assertEqual(short_id("  MARIA   de la Cruz "), "maria")

    def test_single_token_is_its_own_id(self):
        self.assertEqual(short_id("Madonna"), "madonna")

    def test_deterministic_and_idempotent(self):
        for name in ("John Smith", "Sarah Johnson", "Ödön von Horváth", "x"):
            first = short_id(name)
            self.assertEqual(short_id(name), first)
            self.assertEqual(short_id(first), first)

    def test_distinct_first_tokens_give_distinct_ids(self):
        self.assertNotEqual(short_id("John Smith"), short_id("Sarah Johnson"))

    def test_empty_name_rejected(self):
        for name in ("", "   ", "\t\n"):
            with self.assertRaises(ValidationError) as ctx:
                short_id(name)
            self.assertEqual(ctx.exception.code, "empty_display_name")


class TestLookup(unittest.TestCase):
    def setUp(self):
        self.john = _emp("a1", "John Smith")
        self.sarah = _emp("b2", "Sarah Johnson")
        self.employees = [self.john, self.sarah]

    def test_linear_lookup(self):
        self.assertIs(employee_for_short_id("sarah", self.employees), self.sarah)
        self.assertIs(employee_for_short_id("JOHN", self.employees), self.john)
        self.assertIsNone(employee_for_short_id("U8qG4fNEydUbNFcw4QxE", self.employees))
        self.assertIsNone(employee_for_short_id("", self.employees))

    def test_collision_first_in_list_wins(self):
        other_john = _emp("c3", "John Doe")
        employees = [self.john, self.sarah, other_john]
        self.assertIs(employee_for_short_id("john", employees), self.john)

        with self.assertLogs("shared.services.identity", level="WARNING"):
            index = ShortIdIndex(employees)
        self.assertIs(index.get("john"), self.john)
        self.assertEqual([e.id for e in index.collisions()["john"]], ["a1", "c3"])

    def test_index_matches_linear_lookup(self):
        index = ShortIdIndex(self.employees)
        for token in ("john", "sarah", "nobody"):
            self.assertIs(index.get(token), employee_for_short_id(token, self.employees))
        self.assertEqual(index.tokens(), {"john", "sarah"})

    def test_index_rebuilds_only_on_change(self):
        index = ShortIdIndex(self.employees)
        self.assertFalse(index.refresh([_emp("a1", "John Smith"), _emp("b2", "Sarah Johnson")]))

        renamed = [_emp("a1", "Jack Smith"), self.sarah]
        self.assertTrue(index.refresh(renamed))
        self.assertIsNone(index.get("john"))
        self.assertEqual(index.get("jack").id, "a1")


if __name__ == "__main__":
    unittest.main()
