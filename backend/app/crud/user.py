"""Data access for the user record and its KYC slice."""
import logging
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.user import User
from app.schemas.kyc import KYCData, KYCSlice

logger = logging.getLogger(__name__)


def to_kyc_slice(user: User) -> KYCSlice:
    """Project a user row onto the KYC slice."""
    return KYCSlice(
        user_id=user.id,
        kyc_status=user.kyc_status,
        is_verified=user.is_verified,
        kyc_data=KYCData.model_validate(user.kyc_data) if user.kyc_data else None
    )


class UserRepository:
    """Read and update users by id; each call runs in its own session."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_user(self, user_id: str) -> Optional[User]:
        """
        Get user by ID.

        Args:
            user_id: Opaque user identifier

        Returns:
            Optional[User]: User if found, None otherwise
        """
        async with self.session_factory() as session:
            return await session.get(User, user_id)

    async def get_kyc_slice(self, user_id: str) -> Optional[KYCSlice]:
        user = await self.get_user(user_id)
        return to_kyc_slice(user) if user else None

    async def update_kyc_slice(
        self,
        user_id: str,
        mutate: Callable[[KYCSlice], Optional[KYCSlice]]
    ) -> Optional[KYCSlice]:
        """
        Read-modify-write the KYC slice of one user in a single transaction.

        ``mutate`` receives the current slice and returns the replacement, or
        ``None`` to leave the row untouched. The row is locked for the duration
        of the transaction on backends that support ``SELECT ... FOR UPDATE``.

        Args:
            user_id: Opaque user identifier
            mutate: Pure transition from current to next slice

        Returns:
            Optional[KYCSlice]: The stored slice after the call, or None when
            the user does not exist
        """
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(User).where(User.id == user_id).with_for_update()
                )
                user = result.scalar_one_or_none()
                if user is None:
                    return None

                current = to_kyc_slice(user)
                updated = mutate(current)
                if updated is None:
                    return current

                user.kyc_status = updated.kyc_status
                user.is_verified = updated.is_verified
                user.kyc_data = updated.kyc_data.to_document() if updated.kyc_data else None

            logger.debug(
                "KYC slice stored",
                extra={"user_id": user_id, "kyc_status": updated.kyc_status.value}
            )
            return updated
