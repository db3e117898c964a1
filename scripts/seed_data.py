"""
Seed script for STEM Masters Backend.
Populates a development database with locations, catalog, sessions and staff.
Run `alembic upgrade head` first.
"""

import asyncio
import sys
from datetime import timedelta
from decimal import Decimal
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.models.class_session import ClassSession, SessionType, Weekday
from app.models.discount import DiscountCode, DiscountUsage
from app.models.location import Location, LocationOffering, LocationPriceOverride
from app.models.program import Module, Offering, OfferingType, Plan, Program, Topic
from app.models.schedule import Schedule
from app.models.user import Role, User
from app.utils.dates import utcnow
from app.utils.security import hash_password
from core.config import config


class DataSeeder:
    """Seed data generator. Safe to re-run: existing rows are kept."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.locations = {}
        self.offerings = {}
        self.plans = {}
        self.programs = {}
        self.sessions = {}

    async def seed_all(self):
        """Seed all data."""
        print("🌱 Starting database seeding...")
        try:
            await self.seed_locations()
            await self.seed_users()
            await self.seed_catalog()
            await self.seed_location_offerings()
            await self.seed_class_sessions()
            await self.seed_schedules()
            await self.seed_discounts()
            print("\n✅ Database seeding completed successfully!")
        except Exception as e:
            print(f"\n❌ Error during seeding: {e}")
            raise

    async def _existing(self, model, **filters):
        result = await self.session.execute(select(model).filter_by(**filters))
        return result.scalars().first()

    async def seed_locations(self):
        print("📍 Seeding locations...")
        for name, city in (("Downtown", "Austin"), ("Uptown", "Austin"), ("Lakeside", "Round Rock")):
            location = await self._existing(Location, name=name)
            if location is None:
                location = Location(name=name, city=city, state="TX", country="US", is_active=True)
                self.session.add(location)
                print(f"  Created location: {name}")
            self.locations[name] = location
        await self.session.commit()

    async def seed_users(self):
        """Create one account per staff role plus a parent with a student."""
        print("👥 Seeding users...")
        downtown = self.locations["Downtown"].id
        users_data = [
            ("owner@stemmasters.com", "Owner123!", "Sarah", "Johnson", Role.OWNER, None),
            ("admin@stemmasters.com", "Admin123!", "Michael", "Smith", Role.ADMIN, downtown),
            ("manager@stemmasters.com", "Manager123!", "Priya", "Patel", Role.LOCATION_MANAGER, downtown),
            ("teacher@stemmasters.com", "Teacher123!", "Emily", "Davis", Role.TEACHER, downtown),
            ("parent@stemmasters.com", "Parent123!", "John", "Williams", Role.PARENT, downtown),
        ]

        created = 0
        for email, password, first_name, last_name, role, location_id in users_data:
            if await User.get_by_email(self.session, email):
                print(f"  User {email} already exists, skipping")
                continue
            await User.create_user(
                self.session,
                email=email,
                first_name=first_name,
                last_name=last_name,
                hashed_password=hash_password(password),
                role=role,
                location_id=location_id,
                commit=False,
            )
            created += 1

        parent = await User.get_by_email(self.session, "parent@stemmasters.com")
        if not await User.username_exists(self.session, "maxwil"):
            await User.create_user(
                self.session,
                email=f"maxwil@{config.STUDENT_EMAIL_DOMAIN}",
                first_name="Max",
                last_name="Williams",
                hashed_password=hash_password("Student123!"),
                role=Role.STUDENT,
                location_id=downtown,
                username="maxwil",
                parent_id=parent.id,
                commit=False,
            )
            created += 1

        await self.session.commit()
        print(f"  Created {created} new users")

    async def seed_catalog(self):
        """Create the Sprint and Marathon offerings with their programs."""
        print("📚 Seeding catalog...")
        sprint = await self._existing(Offering, name="Robotics Sprint")
        if sprint is None:
            sprint = Offering(
                name="Robotics Sprint",
                description="Eight week robotics course, paid once",
                offering_type=OfferingType.SPRINT,
            )
            self.session.add(sprint)
        marathon = await self._existing(Offering, name="Coding Marathon")
        if marathon is None:
            marathon = Offering(
                name="Coding Marathon",
                description="Year-round coding club, billed monthly",
                offering_type=OfferingType.MARATHON,
            )
            self.session.add(marathon)
        await self.session.flush()
        self.offerings = {"sprint": sprint, "marathon": marathon}

        for name, price in (("Once a week", Decimal("160.00")), ("Twice a week", Decimal("280.00"))):
            plan = await self._existing(Plan, name=name, offering_id=marathon.id)
            if plan is None:
                plan = Plan(offering_id=marathon.id, name=name, price=price)
                self.session.add(plan)
            self.plans[name] = plan

        programs_data = [
            (sprint, "Intro to Robotics", Decimal("200.00"), 2, {
                "Basics": ["Motors", "Wheels"],
                "Sensors": ["Ultrasonic", "Line following"],
            }),
            (marathon, "Python Club", Decimal("160.00"), 1, {
                "Loops": ["For loops", "While loops"],
                "Games": ["Turtle graphics", "Pong"],
            }),
        ]
        for offering, name, price, per_week, outline in programs_data:
            program = await self._existing(Program, name=name)
            if program is None:
                program = Program(
                    offering_id=offering.id,
                    name=name,
                    price=price,
                    sessions_per_week=per_week,
                    estimated_duration=8,
                    modules=[
                        Module(
                            name=module_name,
                            position=m,
                            topics=[Topic(name=t, position=i) for i, t in enumerate(topics)],
                        )
                        for m, (module_name, topics) in enumerate(outline.items())
                    ],
                )
                self.session.add(program)
                print(f"  Created program: {name}")
            self.programs[name] = program

        await self.session.commit()

    async def seed_location_offerings(self):
        """Every location carries both offerings; Uptown charges more for robotics."""
        print("🏷️  Seeding location offerings...")
        for location in self.locations.values():
            for offering in self.offerings.values():
                if await self._existing(
                    LocationOffering, location_id=location.id, offering_id=offering.id
                ):
                    continue
                location_offering = LocationOffering(
                    location_id=location.id, offering_id=offering.id
                )
                if location.name == "Uptown" and offering.offering_type == OfferingType.SPRINT:
                    location_offering.price_overrides = [
                        LocationPriceOverride(
                            program_id=self.programs["Intro to Robotics"].id,
                            price=Decimal("250.00"),
                        )
                    ]
                self.session.add(location_offering)
        await self.session.commit()

    async def seed_class_sessions(self):
        print("🗓️  Seeding class sessions...")
        for location in self.locations.values():
            for weekday, start, end in (
                (Weekday.MONDAY, "16:00", "17:00"),
                (Weekday.WEDNESDAY, "16:00", "17:00"),
                (Weekday.SATURDAY, "10:00", "11:30"),
            ):
                existing = await self._existing(
                    ClassSession, location_id=location.id, weekday=weekday, start_time=start
                )
                if existing is None:
                    existing = ClassSession(
                        name=f"{weekday.value} {start}",
                        location_id=location.id,
                        weekday=weekday,
                        session_type=SessionType.WEEKEND if weekday.is_weekend else SessionType.WEEKDAY,
                        start_time=start,
                        end_time=end,
                        total_capacity=12,
                        available_capacity=12,
                        demo_capacity=2,
                        available_demo_capacity=2,
                    )
                    self.session.add(existing)
                self.sessions[(location.name, weekday)] = existing
        await self.session.commit()

    async def seed_schedules(self):
        """Dated Saturday slots for the robotics program over the next four weeks."""
        print("📅 Seeding schedules...")
        today = utcnow().date()
        first_saturday = today + timedelta(days=(5 - today.weekday()) % 7 or 7)
        program = self.programs["Intro to Robotics"]
        created = 0
        for location in self.locations.values():
            session = self.sessions[(location.name, Weekday.SATURDAY)]
            for week in range(4):
                slot_date = first_saturday + timedelta(weeks=week)
                if await Schedule.find_duplicate(
                    self.session, location.id, session.id, slot_date, program.id, None
                ):
                    continue
                self.session.add(
                    Schedule(
                        location_id=location.id,
                        session_id=session.id,
                        date=slot_date,
                        program_id=program.id,
                        total_capacity=8,
                        available_capacity=8,
                        demo_capacity=1,
                        available_demo_capacity=1,
                    )
                )
                created += 1
        await self.session.commit()
        print(f"  Created {created} schedules")

    async def seed_discounts(self):
        print("🎟️  Seeding discount codes...")
        codes = [
            ("WELCOME10", 10, DiscountUsage.MULTIPLE, None),
            ("SIBLING15", 15, DiscountUsage.MULTIPLE, self.locations["Downtown"].id),
            ("FREEMONTH", 100, DiscountUsage.SINGLE, None),
        ]
        for code, percent, usage, location_id in codes:
            if await DiscountCode.get_by_code(self.session, code):
                continue
            self.session.add(
                DiscountCode(
                    code=code,
                    percent=percent,
                    usage=usage,
                    location_id=location_id,
                    expire_date=utcnow() + timedelta(days=180),
                )
            )
        await self.session.commit()


async def main():
    """Main seeding function."""
    engine = create_async_engine(config.DATABASE_URL, echo=False)
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as session:
        seeder = DataSeeder(session)
        await seeder.seed_all()

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
