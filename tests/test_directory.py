import unittest

from shared.enums import EmployeeRole
from shared.errors import NotFoundError, ValidationError
from shared.services.directory import EmployeeDirectory
from shared.store.memory import MemoryStore


class TestEmployeeDirectory(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.directory = EmployeeDirectory(MemoryStore())

    async def test_register_and_lookup(self):
        emp = await self.directory.register("  John   Smith ", "John@Example.com", tg_id=1001)
        self.assertEqual(emp.name, "John Smith")
        self.assertEqual(emp.email, "john@example.com")
        self.assertEqual(emp.short_id, "john")
        self.assertEqual(emp.role, EmployeeRole.EMPLOYEE)

        self.assertEqual((await self.directory.get(emp.id)).name, "John Smith")
        self.assertEqual((await self.directory.get_by_email("JOHN@example.com")).id, emp.id)
        self.assertEqual((await self.directory.get_by_tg_id(1001)).id, emp.id)
        self.assertEqual((await self.directory.by_short_id("john")).id, emp.id)
        self.assertIsNone(await self.directory.get_by_tg_id(2002))
        self.assertIsNone(await self.directory.get("missing"))

    async def test_require_missing(self):
        with self.assertRaises(NotFoundError) as ctx:
            await self.directory.require("missing")
        self.assertEqual(ctx.exception.code, "employee_not_found")

    async def test_rejections(self):
        await self.directory.register("John Smith", "john@example.com", tg_id=1)
        cases = [
            (("", "x@example.com"), {}, "empty_display_name"),
            (("Sarah Johnson", "not-an-email"), {}, "invalid_email"),
            (("Sarah Johnson", "JOHN@EXAMPLE.COM"), {}, "email_taken"),
            (("Sarah Johnson", "sarah@example.com"), {"tg_id": 1}, "tg_id_taken"),
        ]
        for args, kwargs, code in cases:
            with self.subTest(code=code):
                with self.assertRaises(ValidationError) as ctx:
                    await self.directory.register(*args, **kwargs)
                self.assertEqual(ctx.exception.code, code)

    async def test_short_id_collision_is_logged_first_wins(self):
        first = await self.directory.register("John Smith", "john@example.com")
        with self.assertLogs("shared.services.directory", level="WARNING"):
            await self.directory.register("John Doe", "jdoe@example.com")
        self.assertEqual((await self.directory.by_short_id("john")).id, first.id)

    async def test_list_by_role(self):
        await self.directory.register("Mia Manager", "mia@example.com", EmployeeRole.MANAGER)
        await self.directory.register("John Smith", "john@example.com")
        await self.directory.register("Sarah Johnson", "sarah@example.com")
        self.assertEqual([e.name for e in await self.directory.list(EmployeeRole.MANAGER)], ["Mia Manager"])
        self.assertEqual(
            [e.name for e in await self.directory.list(EmployeeRole.EMPLOYEE)],
            ["John Smith", "Sarah Johnson"],
        )
        self.assertEqual(len(await self.directory.list()), 3)

    async def test_index_follows_renames_and_reset(self):
        emp = await self.directory.register("John Smith", "john@example.com")
        self.assertIsNotNone(await self.directory.by_short_id("john"))

        await self.directory.store.update("employees", emp.id, {"name": "Jack Smith"})
        self.assertIsNone(await self.directory.by_short_id("john"))
        self.assertEqual((await self.directory.by_short_id("jack")).id, emp.id)

        self.directory.reset()
        self.assertEqual((await self.directory.by_short_id("jack")).id, emp.id)


if __name__ == "__main__":
    unittest.main()
