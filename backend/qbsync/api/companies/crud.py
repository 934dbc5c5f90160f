from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from typing import Dict
from .models import Company


async def get_customer_company_map(db: AsyncSession) -> Dict[str, int]:
    """QuickBooks customer id -> local company id, for linked companies only."""
    result = await db.execute(
        select(Company.id, Company.quickbooks_customer_id).where(
            Company.quickbooks_customer_id.is_not(None)
        )
    )
    return {customer_id: company_id for company_id, customer_id in result.all()}
