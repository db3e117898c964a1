"""Location and per-location offering/pricing models."""

from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional, Sequence
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Numeric,
    String,
    UniqueConstraint,
    select,
)
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column, relationship, selectinload

from core.db import Base, TimestampMixin, SoftDeleteMixin

if TYPE_CHECKING:
    from app.models.program import Offering


@dataclass(frozen=True)
class OfferingPrice:
    """Effective price and tax for a plan/program at a location."""

    price: Decimal
    tax_percent: Decimal
    overridden: bool


class Location(Base, TimestampMixin, SoftDeleteMixin):
    """A physical site that runs classes."""

    __tablename__ = "locations"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    street: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    zip_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    country: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    offerings: Mapped[List["LocationOffering"]] = relationship(
        "LocationOffering",
        back_populates="location",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @classmethod
    async def get_by_id(
        cls, db_session: AsyncSession, id: str
    ) -> Optional["Location"]:
        """Get location by ID with its offerings and overrides loaded."""
        result = await db_session.execute(
            select(cls)
            .options(
                selectinload(cls.offerings).selectinload(LocationOffering.price_overrides)
            )
            .where(cls.id == id, cls.is_deleted == False)
        )
        return result.scalars().first()

    @classmethod
    async def get_all(cls, db_session: AsyncSession) -> Sequence["Location"]:
        result = await db_session.execute(
            select(cls).where(cls.is_deleted == False).order_by(cls.name)
        )
        return result.scalars().all()

    def find_offering(self, offering_id: str) -> Optional["LocationOffering"]:
        for location_offering in self.offerings:
            if location_offering.offering_id == offering_id:
                return location_offering
        return None

    def get_offering_pricing(
        self,
        offering_id: str,
        base_price: Decimal,
        base_tax_percent: Decimal = Decimal("0"),
        plan_id: Optional[str] = None,
        program_id: Optional[str] = None,
    ) -> Optional[OfferingPrice]:
        """
        Resolve the price/tax charged here for a plan or program.

        Returns None when the location does not carry the offering. Otherwise the
        location's override wins when present; the catalog values are used for
        any field the override leaves empty.
        """
        location_offering = self.find_offering(offering_id)
        if location_offering is None:
            return None

        for override in location_offering.price_overrides:
            if (plan_id and override.plan_id == plan_id) or (
                program_id and override.program_id == program_id
            ):
                return OfferingPrice(
                    price=override.price if override.price is not None else base_price,
                    tax_percent=(
                        override.tax_percent
                        if override.tax_percent is not None
                        else base_tax_percent
                    ),
                    overridden=True,
                )

        return OfferingPrice(
            price=base_price, tax_percent=base_tax_percent, overridden=False
        )


class LocationOffering(Base):
    """An offering that a location carries."""

    __tablename__ = "location_offerings"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    location_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("locations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    offering_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("offerings.id"), nullable=False, index=True
    )

    __table_args__ = (
        UniqueConstraint("location_id", "offering_id", name="uq_location_offerings"),
    )

    location: Mapped["Location"] = relationship("Location", back_populates="offerings")
    offering: Mapped["Offering"] = relationship("Offering", lazy="selectin")
    price_overrides: Mapped[List["LocationPriceOverride"]] = relationship(
        "LocationPriceOverride",
        back_populates="location_offering",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class LocationPriceOverride(Base):
    """Location-specific price/tax for one plan or program of an offering."""

    __tablename__ = "location_price_overrides"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    location_offering_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("location_offerings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    plan_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("plans.id"), nullable=True
    )
    program_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("programs.id"), nullable=True
    )
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    tax_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)

    location_offering: Mapped["LocationOffering"] = relationship(
        "LocationOffering", back_populates="price_overrides"
    )
