from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from typing import Optional
from ..users import models as users_models


async def get_user_by_email(
    db: AsyncSession, email: str
) -> Optional[users_models.User]:
    result = await db.execute(
        select(users_models.User).where(users_models.User.email == email)
    )
    return result.scalar_one_or_none()
