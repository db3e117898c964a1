from datetime import datetime, timezone
from typing import Optional, TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, declared_attr, mapped_column, relationship

if TYPE_CHECKING:
    from app.models.location import Location


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )


class SoftDeleteMixin:
    """Mixin that adds soft delete semantics."""

    @declared_attr.directive
    def is_deleted(cls) -> Mapped[bool]:  # type: ignore[override]
        return mapped_column(
            Boolean,
            default=False,
            server_default="false",
            nullable=False,
            index=True,
        )

    @declared_attr.directive
    def deleted_at(cls) -> Mapped[Optional[datetime]]:  # type: ignore[override]
        return mapped_column(DateTime(timezone=True), nullable=True)

    def soft_delete(self) -> None:
        """Mark the record as deleted without removing it."""
        self.is_deleted = True
        self.deleted_at = datetime.now(timezone.utc)


class LocationMixin:
    """Tenant scoping: the row belongs to one location, or to none (global)."""

    @declared_attr.directive
    def location_id(cls) -> Mapped[Optional[str]]:  # type: ignore[override]
        return mapped_column(
            String(36), ForeignKey("locations.id"), nullable=True, index=True
        )

    @declared_attr.directive
    def location(cls) -> Mapped[Optional["Location"]]:  # type: ignore[override]
        return relationship("Location")


__all__ = ["TimestampMixin", "SoftDeleteMixin", "LocationMixin"]
