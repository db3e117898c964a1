"""Discount code validation and redemption."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.discount import DiscountCode, DiscountUsage
from app.utils.dates import utcnow
from core.exceptions.base import (
    DiscountCodeExhaustedException,
    DiscountCodeExpiredException,
    DiscountCodeNotFoundException,
)
from core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class DiscountValidation:
    """A code that passed validation."""

    valid: bool
    code: str
    percent: int
    usage: DiscountUsage
    description: Optional[str]
    remaining_uses: Optional[int]


@dataclass
class DiscountRedemption:
    code: str
    percent: int
    remaining_uses: Optional[int]


class DiscountService:
    """Validates codes for a location and counts redemptions."""

    def __init__(self, db_session: AsyncSession):
        self.db_session = db_session

    async def _resolve(
        self,
        code: str,
        location_id: Optional[str],
        now: datetime,
        persist_expiry: bool,
    ) -> DiscountCode:
        discount = await DiscountCode.get_by_code(self.db_session, code)
        if (
            discount is None
            or not discount.is_active
            or not discount.applies_to_location(location_id)
        ):
            raise DiscountCodeNotFoundException(data={"code": code.upper()})

        if discount.is_expired(now):
            logger.info(f"Discount code {discount.code} expired, deactivating")
            discount.is_active = False
            if persist_expiry:
                await self.db_session.commit()
            else:
                await self.db_session.flush()
            raise DiscountCodeExpiredException(data={"code": discount.code})

        if not discount.is_usable:
            raise DiscountCodeExhaustedException(data={"code": discount.code})

        return discount

    async def validate(
        self,
        code: str,
        location_id: Optional[str] = None,
        now: Optional[datetime] = None,
        persist_expiry: bool = True,
    ) -> DiscountValidation:
        """
        Check that a code can be used at a location, without consuming it.

        Raises:
            DiscountCodeNotFoundException: unknown, inactive or other-location code
            DiscountCodeExpiredException: past its expiry (the code is deactivated)
            DiscountCodeExhaustedException: no uses left
        """
        discount = await self._resolve(code, location_id, now or utcnow(), persist_expiry)
        return DiscountValidation(
            valid=True,
            code=discount.code,
            percent=discount.percent,
            usage=discount.usage,
            description=discount.description,
            remaining_uses=discount.remaining_uses,
        )

    async def apply(
        self,
        code: str,
        location_id: Optional[str] = None,
        now: Optional[datetime] = None,
        persist_expiry: bool = True,
    ) -> DiscountRedemption:
        """
        Validate a code and count one use.

        The increment is a conditional UPDATE; losing a race for the last use
        raises DiscountCodeExhaustedException. Only flushes: the caller commits,
        once per successful checkout.
        """
        now = now or utcnow()
        discount = await self._resolve(code, location_id, now, persist_expiry)

        if not await DiscountCode.try_redeem(self.db_session, discount.id, now):
            raise DiscountCodeExhaustedException(data={"code": discount.code})

        await self.db_session.refresh(discount)
        logger.info(f"Discount code {discount.code} redeemed ({discount.current_uses} uses)")
        return DiscountRedemption(
            code=discount.code,
            percent=discount.percent,
            remaining_uses=discount.remaining_uses,
        )
