"""
Merchant Service

Lookups against the merchant registry. The order API only reads merchants;
create_merchant exists for seeding and tests.
"""
from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from ..db.models import MerchantModel
from ..exceptions import NotFoundError
from ..models.orders import Merchant
from .order_state import MERCHANT_ALIVE

logger = logging.getLogger(__name__)


async def get_merchant(db: AsyncSession, merchant_id: int) -> Merchant:
    """
    Retrieve a merchant by ID regardless of status.

    Raises:
        NotFoundError: If no merchant has this ID
    """
    db_merchant = await db.get(MerchantModel, merchant_id)

    if not db_merchant:
        raise NotFoundError(f"Merchant not found: {merchant_id}")

    return Merchant.model_validate(db_merchant)


async def get_alive_merchant(db: AsyncSession, merchant_id: int) -> Merchant:
    """
    Retrieve a merchant that may submit new orders.

    Raises:
        NotFoundError: If the merchant is missing or not alive
    """
    result = await db.execute(
        select(MerchantModel).where(
            MerchantModel.id == merchant_id,
            MerchantModel.status == MERCHANT_ALIVE
        )
    )
    db_merchant = result.scalar_one_or_none()

    if not db_merchant:
        raise NotFoundError(f"Merchant not found: {merchant_id}")

    return Merchant.model_validate(db_merchant)


async def create_merchant(
    db: AsyncSession,
    public_key: str,
    domain: str,
    name: str = "",
    status: str = MERCHANT_ALIVE,
    merchant_id: Optional[int] = None
) -> Merchant:
    """
    Register a merchant record.

    Args:
        db: Database session
        public_key: PEM-encoded public key used to verify the merchant's requests
        domain: Host that returnUrl/notifyUrl must point at
        name: Display name
        status: Registry status (only "alive" merchants may submit)
        merchant_id: Explicit ID, or None to autoincrement

    Returns:
        Created Merchant
    """
    db_merchant = MerchantModel(
        id=merchant_id,
        name=name,
        public_key=public_key,
        domain=domain,
        status=status,
    )

    db.add(db_merchant)
    await db.commit()
    await db.refresh(db_merchant)

    logger.info(f"Registered merchant: {db_merchant.id}, domain={domain}, status={status}")

    return Merchant.model_validate(db_merchant)
