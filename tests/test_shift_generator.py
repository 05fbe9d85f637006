import random
import unittest
from collections import Counter
from datetime import date

from shared.enums import ActivityType, EmployeeRole, ShiftType
from shared.errors import NotFoundError, ValidationError
from shared.schemas import Employee
from shared.services.consistency import find_double_bookings
from shared.services.core import build_core
from shared.services.shift_generator import generate_balanced_shifts, make_shift, summarize_distribution
from shared.store.memory import MemoryStore


NAMES = ["John Smith", "Sarah Johnson", "Mike Brown", "Emma Davis", "Alex Kim", "Lena Park"]


def _employees(n: int) -> list[Employee]:
    return [Employee(id=f"e{i}", name=NAMES[i], email=f"e{i}@example.com") for i in range(n)]


class TestGenerator(unittest.TestCase):
    def test_daily_staffing_and_one_shift_per_day(self):
        shifts = generate_balanced_shifts(date(2024, 11, 25), date(2024, 12, 1), _employees(6), rng=random.Random(7))
        self.assertEqual(len(shifts), 7 * 5)

        by_day: dict[date, list] = {}
        for s in shifts:
            by_day.setdefault(s.date, []).append(s)
        self.assertEqual(len(by_day), 7)
        for day, day_shifts in by_day.items():
            counts = Counter(s.type for s in day_shifts)
            self.assertEqual(counts, Counter({ShiftType.DAY: 2, ShiftType.AFTERNOON: 2, ShiftType.NIGHT: 1}))
            owners = [s.employee_id for s in day_shifts]
            self.assertEqual(len(owners), len(set(owners)), day)

    def test_canonical_times_and_short_id_owner(self):
        shifts = generate_balanced_shifts(date(2024, 11, 27), date(2024, 11, 27), _employees(5), rng=random.Random(1))
        times = {s.type: (s.start_time, s.end_time) for s in shifts}
        self.assertEqual(times[ShiftType.DAY], ("08:00", "16:00"))
        self.assertEqual(times[ShiftType.AFTERNOON], ("16:00", "00:00"))
        self.assertEqual(times[ShiftType.NIGHT], ("00:00", "08:00"))
        self.assertTrue({s.employee_id for s in shifts} <= {"john", "sarah", "mike", "emma", "alex"})

    def test_seeded_generation_is_repeatable(self):
        a = generate_balanced_shifts(date(2024, 11, 1), date(2024, 11, 10), _employees(6), rng=random.Random(42))
        b = generate_balanced_shifts(date(2024, 11, 1), date(2024, 11, 10), _employees(6), rng=random.Random(42))
        self.assertEqual([(s.date, s.type, s.employee_id) for s in a], [(s.date, s.type, s.employee_id) for s in b])

    def test_not_enough_employees(self):
        with self.assertRaises(ValidationError) as ctx:
            generate_balanced_shifts(date(2024, 11, 1), date(2024, 11, 2), _employees(4))
        self.assertEqual(ctx.exception.code, "not_enough_employees")

    def test_custom_staffing_and_bad_range(self):
        shifts = generate_balanced_shifts(
            date(2024, 11, 1), date(2024, 11, 1), _employees(2), per_day={"day": 1, "afternoon": 0, "night": 1}
        )
        self.assertEqual(sorted(s.type.value for s in shifts), ["day", "night"])
        with self.assertRaises(ValidationError):
            generate_balanced_shifts(date(2024, 11, 2), date(2024, 11, 1), _employees(5))

    def test_colliding_short_ids_share_one_daily_shift(self):
        employees = _employees(5) + [Employee(id="e9", name="John Doe", email="jdoe@example.com")]
        with self.assertLogs("shared.services.shift_generator", level="WARNING"):
            shifts = generate_balanced_shifts(
                date(2024, 11, 1), date(2024, 11, 14), employees, rng=random.Random(3)
            )
        per_day = Counter((s.date, s.employee_id) for s in shifts)
        self.assertEqual(max(per_day.values()), 1)
        self.assertNotIn("John Doe", {s.employee_name for s in shifts})

    def test_collisions_do_not_count_as_extra_staff(self):
        employees = _employees(4) + [Employee(id="e9", name="John Doe", email="jdoe@example.com")]
        with self.assertRaises(ValidationError) as ctx:
            with self.assertLogs("shared.services.shift_generator", level="WARNING"):
                generate_balanced_shifts(date(2024, 11, 1), date(2024, 11, 1), employees)
        self.assertEqual(ctx.exception.code, "not_enough_employees")

    def test_existing_shifts_fill_slots_and_book_owners(self):
        day = date(2024, 11, 27)
        staff = _employees(6)
        existing = [make_shift(staff[0], day, ShiftType.DAY), make_shift(staff[1], day, ShiftType.NIGHT)]
        shifts = generate_balanced_shifts(day, day, staff, rng=random.Random(8), existing=existing)

        self.assertEqual(Counter(s.type for s in shifts), Counter({ShiftType.DAY: 1, ShiftType.AFTERNOON: 2}))
        self.assertFalse({"john", "sarah"} & {s.employee_id for s in shifts})

        self.assertEqual(generate_balanced_shifts(day, day, staff, existing=existing + shifts), [])

    def test_existing_bookings_can_leave_too_few_free(self):
        day = date(2024, 11, 27)
        staff = _employees(5)
        # three owners already on day shifts leave two free for three open slots
        existing = [make_shift(staff[i], day, ShiftType.DAY) for i in range(3)]
        with self.assertRaises(ValidationError) as ctx:
            generate_balanced_shifts(day, day, staff, existing=existing)
        self.assertEqual(ctx.exception.code, "not_enough_employees")

    def test_summary(self):
        shifts = generate_balanced_shifts(date(2024, 11, 1), date(2024, 11, 3), _employees(5), rng=random.Random(3))
        summary = summarize_distribution(shifts)
        self.assertEqual(sum(summary.per_employee.values()), 15)
        self.assertEqual(summary.per_type, {"day": 6, "afternoon": 6, "night": 3})
        self.assertEqual(summary.staffing_deviations, {})

        short = [s for s in shifts if not (s.date == date(2024, 11, 2) and s.type == ShiftType.NIGHT)]
        summary = summarize_distribution(short)
        self.assertEqual(summary.staffing_deviations, {"2024-11-02": {"day": 2, "afternoon": 2, "night": 0}})


class TestShiftService(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.core = build_core(MemoryStore())
        d = self.core.directory
        self.manager = await d.register("Mia Manager", "mia@example.com", EmployeeRole.MANAGER)
        self.john = await d.register("John Smith", "john@example.com")
        self.sarah = await d.register("Sarah Johnson", "sarah@example.com")

    async def asyncTearDown(self):
        await self.core.close()

    async def test_create_uses_canonical_times_unless_given(self):
        svc = self.core.shift_service
        s1 = await svc.create(actor=self.manager, owner=self.john, day=date(2024, 11, 27), shift_type=ShiftType.AFTERNOON)
        self.assertEqual((s1.employee_id, s1.start_time, s1.end_time), ("john", "16:00", "00:00"))

        s2 = await svc.create(
            actor=self.manager,
            owner=self.sarah,
            day=date(2024, 11, 27),
            shift_type=ShiftType.DAY,
            start_time="9:30",
            end_time="17:00",
        )
        self.assertEqual((s2.start_time, s2.end_time), ("09:30", "17:00"))

        entries = await self.core.ledger.list_recent()
        self.assertEqual([e.type for e in entries], [ActivityType.SHIFT_CREATED] * 2)
        self.assertEqual(entries[0].user_id, self.manager.id)

    async def test_double_booking_is_allowed_but_logged(self):
        svc = self.core.shift_service
        await svc.create(actor=self.manager, owner=self.john, day=date(2024, 11, 27), shift_type=ShiftType.DAY)
        with self.assertLogs("shared.services.shifts_service", level="WARNING"):
            await svc.create(actor=self.manager, owner=self.john, day=date(2024, 11, 27), shift_type=ShiftType.NIGHT)
        self.assertEqual(len(await self.core.shifts.list_by_owner("john")), 2)

    async def test_move_changes_owner_and_date(self):
        svc = self.core.shift_service
        s = await svc.create(actor=self.manager, owner=self.john, day=date(2024, 11, 27), shift_type=ShiftType.DAY)
        moved = await svc.move(actor=self.manager, shift_id=s.id, new_owner=self.sarah, new_day=date(2024, 11, 29))
        self.assertEqual((moved.employee_id, moved.date), ("sarah", date(2024, 11, 29)))

        stored = await self.core.shifts.get(s.id)
        self.assertEqual((stored.employee_id, stored.employee_name, stored.date), ("sarah", "Sarah Johnson", date(2024, 11, 29)))
        self.assertEqual(stored.type, ShiftType.DAY)

        entry = (await self.core.ledger.list_recent(1))[0]
        self.assertEqual(entry.type, ActivityType.SHIFT_UPDATED)
        self.assertEqual(entry.details["fromOwner"], "john")
        self.assertEqual(entry.details["toOwner"], "sarah")

    async def test_delete(self):
        svc = self.core.shift_service
        s = await svc.create(actor=self.manager, owner=self.john, day=date(2024, 11, 27), shift_type=ShiftType.DAY)
        await svc.delete(actor=self.manager, shift_id=s.id)
        self.assertIsNone(await self.core.shifts.get(s.id))
        self.assertEqual((await self.core.ledger.list_recent(1))[0].type, ActivityType.SHIFT_DELETED)
        with self.assertRaises(NotFoundError):
            await svc.delete(actor=self.manager, shift_id=s.id)

    async def test_generate_persists_and_records(self):
        employees = [self.john, self.sarah]
        created, summary = await self.core.shift_service.generate(
            actor=self.manager,
            start=date(2024, 12, 1),
            end=date(2024, 12, 2),
            employees=employees,
            per_day={"day": 1, "afternoon": 1, "night": 0},
            seed=5,
        )
        self.assertEqual(len(created), 4)
        self.assertEqual(len(await self.core.shifts.list_all()), 4)
        self.assertEqual(summary.per_type, {"day": 2, "afternoon": 2})
        entry = (await self.core.ledger.list_recent(1))[0]
        self.assertEqual(entry.details["count"], 4)

        with self.assertRaises(ValidationError):
            await self.core.shift_service.generate(
                actor=self.manager, start=date(2024, 12, 1), end=date(2024, 12, 1), employees=[]
            )

    async def test_regenerating_a_scheduled_range_adds_nothing(self):
        svc = self.core.shift_service
        kwargs = dict(
            actor=self.manager,
            start=date(2024, 12, 1),
            end=date(2024, 12, 2),
            employees=[self.john, self.sarah],
            per_day={"day": 1, "afternoon": 1, "night": 0},
        )
        first, _ = await svc.generate(**kwargs, seed=1)
        again, summary = await svc.generate(**kwargs, seed=2)

        self.assertEqual(len(first), 4)
        self.assertEqual(again, [])
        self.assertEqual(summary.staffing_deviations, {})
        self.assertEqual(find_double_bookings(await self.core.shifts.list_all()), {})

    async def test_regenerating_fills_only_open_slots(self):
        svc = self.core.shift_service
        kwargs = dict(
            actor=self.manager,
            start=date(2024, 12, 1),
            end=date(2024, 12, 1),
            employees=[self.john, self.sarah],
            per_day={"day": 1, "afternoon": 1, "night": 0},
        )
        first, _ = await svc.generate(**kwargs, seed=4)
        removed = first[0]
        await svc.delete(actor=self.manager, shift_id=removed.id)

        refill, _ = await svc.generate(**kwargs, seed=5)
        self.assertEqual([(s.type, s.employee_id) for s in refill], [(removed.type, removed.employee_id)])
        self.assertEqual(find_double_bookings(await self.core.shifts.list_all()), {})

    async def test_generate_skips_colliding_short_ids(self):
        doe = await self.core.directory.register("John Doe", "jdoe@example.com")
        created, _ = await self.core.shift_service.generate(
            actor=self.manager,
            start=date(2024, 12, 1),
            end=date(2024, 12, 3),
            employees=[self.john, doe, self.sarah],
            per_day={"day": 1, "afternoon": 1, "night": 0},
            seed=9,
        )
        self.assertEqual(len(created), 6)
        self.assertEqual(find_double_bookings(created), {})
        self.assertNotIn("John Doe", {s.employee_name for s in created})

    async def test_malformed_times_are_validation_errors(self):
        svc = self.core.shift_service
        for start, end in (("25:99", None), ("08:00", "noon")):
            with self.subTest(start=start, end=end):
                with self.assertRaises(ValidationError) as ctx:
                    await svc.create(
                        actor=self.manager,
                        owner=self.john,
                        day=date(2024, 11, 27),
                        shift_type=ShiftType.DAY,
                        start_time=start,
                        end_time=end,
                    )
                self.assertEqual(ctx.exception.code, "invalid_time")
        self.assertEqual(await self.core.shifts.list_all(), [])


if __name__ == "__main__":
    unittest.main()
