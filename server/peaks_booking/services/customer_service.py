"""Customer identity resolution for bookings."""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import StorageError
from ..models.user import User, UserRole

logger = logging.getLogger(__name__)


def split_full_name(full_name: str) -> tuple[str, str]:
    first, _, last = full_name.strip().partition(" ")
    return first, last.strip()


class CustomerService:
    """Service for looking up and creating customers."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, user_id: UUID) -> User | None:
        stmt = select(User).where(User.id == user_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> User | None:
        stmt = select(User).where(User.email == email.strip().lower())
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create(self, email: str, full_name: str, phone: Optional[str] = None) -> User:
        """
        Return the customer registered under ``email``, creating one if needed.

        The new row is committed immediately. Two guest checkouts racing on the
        same email both end up with the single row that won the unique index.
        """
        email = email.strip().lower()
        try:
            existing = await self.get_by_email(email)
            if existing:
                return existing

            first_name, last_name = split_full_name(full_name)
            user = User(
                email=email,
                first_name=first_name,
                last_name=last_name,
                phone=phone,
                role=UserRole.CUSTOMER.value,
            )
            self.db.add(user)
            try:
                await self.db.commit()
            except IntegrityError:
                await self.db.rollback()
                existing = await self.get_by_email(email)
                if existing is None:
                    raise
                return existing
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageError("customer.get_or_create", cause=e) from e

        logger.info(
            "Guest customer created",
            extra={"customer_id": str(user.id)}
        )
        return user

    async def resolve_customer_id(
        self,
        current_user: Optional[dict],
        email: str,
        full_name: str,
        phone: Optional[str] = None,
    ) -> UUID:
        """
        Pick the customer a new booking belongs to.

        An authenticated caller whose token subject names a known user wins;
        otherwise the lead participant's email identifies the customer.
        """
        if current_user:
            try:
                user_id = UUID(str(current_user.get("user_id")))
            except ValueError:
                user_id = None
            if user_id is not None:
                try:
                    user = await self.get_by_id(user_id)
                except SQLAlchemyError as e:
                    raise StorageError("customer.get_by_id", cause=e) from e
                if user:
                    return user.id

        user = await self.get_or_create(email, full_name, phone)
        return user.id
