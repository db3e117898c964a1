"""Read-through cache of catalog data used on the checkout hot path."""

import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, Generic, Optional, Tuple, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.program import Offering, OfferingType, Plan, Program
from core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ModuleSnapshot:
    id: str
    name: str
    total_topics: int


@dataclass(frozen=True)
class ProgramSnapshot:
    """Immutable copy of a program with its module outline."""

    id: str
    name: str
    description: str
    offering_id: str
    offering_type: OfferingType
    price: Decimal
    sessions_per_week: int
    is_active: bool
    stripe_product_id: Optional[str]
    paypal_product_id: Optional[str]
    modules: Tuple[ModuleSnapshot, ...]

    @property
    def is_marathon(self) -> bool:
        return self.offering_type == OfferingType.MARATHON

    @property
    def total_modules(self) -> int:
        return len(self.modules)

    @classmethod
    def from_model(cls, program: Program) -> "ProgramSnapshot":
        return cls(
            id=program.id,
            name=program.name,
            description=program.description,
            offering_id=program.offering_id,
            offering_type=program.offering.offering_type,
            price=program.price,
            sessions_per_week=program.sessions_per_week,
            is_active=program.is_active,
            stripe_product_id=program.stripe_product_id,
            paypal_product_id=program.paypal_product_id,
            modules=tuple(
                ModuleSnapshot(id=m.id, name=m.name, total_topics=len(m.topics))
                for m in program.modules
            ),
        )


@dataclass(frozen=True)
class PlanSnapshot:
    id: str
    name: str
    price: Decimal
    tax_percent: Optional[Decimal]


@dataclass(frozen=True)
class OfferingSnapshot:
    id: str
    name: str
    offering_type: OfferingType
    is_active: bool
    plans: Tuple[PlanSnapshot, ...]

    @property
    def is_marathon(self) -> bool:
        return self.offering_type == OfferingType.MARATHON

    def find_plan(self, plan_id: str) -> Optional[PlanSnapshot]:
        return next((plan for plan in self.plans if plan.id == plan_id), None)

    @classmethod
    def from_model(cls, offering: Offering) -> "OfferingSnapshot":
        return cls(
            id=offering.id,
            name=offering.name,
            offering_type=offering.offering_type,
            is_active=offering.is_active,
            plans=tuple(
                PlanSnapshot(
                    id=plan.id,
                    name=plan.name,
                    price=plan.price,
                    tax_percent=plan.tax_percent,
                )
                for plan in offering.plans
                if not plan.is_deleted
            ),
        )


class _Entries(Generic[T]):
    """Keyed entries stamped with the time they were loaded."""

    def __init__(self) -> None:
        self.items: Dict[str, Tuple[float, T]] = {}

    def get(self, key: str, now: float, max_age: Optional[float]) -> Optional[T]:
        entry = self.items.get(key)
        if entry is None:
            return None
        loaded_at, value = entry
        if max_age is not None and now - loaded_at > max_age:
            del self.items[key]
            return None
        return value

    def put(self, key: str, value: T, now: float) -> None:
        self.items[key] = (now, value)


class CatalogCache:
    """
    Programs and offerings keyed by id, loaded from the database on a miss.

    One instance lives on ``app.state`` and is handed to request handlers through
    a dependency. Catalog writes call the ``invalidate_*`` hooks; ``max_age``
    (seconds) bounds how long an entry may be served without a reload, measured
    with ``clock`` so tests can move time forward.
    """

    def __init__(
        self,
        max_age: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_age = max_age
        self.clock = clock
        self._programs: _Entries[ProgramSnapshot] = _Entries()
        self._offerings: _Entries[OfferingSnapshot] = _Entries()
        self.hits = 0
        self.misses = 0

    async def get_program(
        self, db_session: AsyncSession, program_id: str
    ) -> Optional[ProgramSnapshot]:
        now = self.clock()
        snapshot = self._programs.get(program_id, now, self.max_age)
        if snapshot is not None:
            self.hits += 1
            return snapshot

        self.misses += 1
        program = await Program.get_by_id(db_session, program_id)
        if program is None:
            return None
        snapshot = ProgramSnapshot.from_model(program)
        self._programs.put(program_id, snapshot, now)
        return snapshot

    async def get_offering(
        self, db_session: AsyncSession, offering_id: str
    ) -> Optional[OfferingSnapshot]:
        now = self.clock()
        snapshot = self._offerings.get(offering_id, now, self.max_age)
        if snapshot is not None:
            self.hits += 1
            return snapshot

        self.misses += 1
        offering = await Offering.get_by_id(db_session, offering_id)
        if offering is None:
            return None
        snapshot = OfferingSnapshot.from_model(offering)
        self._offerings.put(offering_id, snapshot, now)
        return snapshot

    def invalidate_program(self, program_id: str) -> None:
        self._programs.items.pop(program_id, None)

    def invalidate_offering(self, offering_id: str) -> None:
        """Drop an offering and every cached program that belongs to it."""
        self._offerings.items.pop(offering_id, None)
        stale = [
            key
            for key, (_, snapshot) in self._programs.items.items()
            if snapshot.offering_id == offering_id
        ]
        for key in stale:
            del self._programs.items[key]

    def invalidate_plan(self, plan: Plan) -> None:
        self.invalidate_offering(plan.offering_id)

    def clear(self) -> None:
        self._programs.items.clear()
        self._offerings.items.clear()
        logger.info("Catalog cache cleared")

    def __len__(self) -> int:
        return len(self._programs.items) + len(self._offerings.items)
