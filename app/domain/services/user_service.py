"""
User Service - resolving the WhatsApp sender to a User row
"""
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.core.exceptions import UserNotFoundError, ValidationException
from app.core.logging import get_logger
from app.core.validation import PhoneNumberValidator
from app.db.models.courier import Courier
from app.db.models.user import User, UserRole

logger = get_logger(__name__)


class UserService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, user_id: int) -> User:
        result = await self.db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    async def find_by_phone(self, phone_number: str) -> Optional[User]:
        normalized = PhoneNumberValidator.normalize(phone_number)
        result = await self.db.execute(
            select(User).where(User.phone_number == normalized)
        )
        return result.scalar_one_or_none()

    async def get_or_create_by_phone(self, phone_number: str, name: Optional[str] = None) -> User:
        """
        Find the user by normalized phone, or register them as a courier.

        Raises:
            ValidationException: the phone number is malformed
        """
        if not PhoneNumberValidator.validate(PhoneNumberValidator.normalize(phone_number)):
            raise ValidationException("Invalid phone number format", field="phone_number")

        user = await self.find_by_phone(phone_number)
        if user is not None:
            return user

        user = User(
            phone_number=PhoneNumberValidator.normalize(phone_number),
            name=name,
            role=UserRole.COURIER,
        )
        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)

        logger.info(
            "Registered new user from WhatsApp",
            extra_data={
                "user_id": user.id,
                "phone": PhoneNumberValidator.mask(user.phone_number),
            }
        )
        return user

    async def get_display_name(self, user: User) -> str:
        """שם לפנייה בהודעות: שם השליח המקושר, אחרת שם המשתמש, אחרת 'משתמש'"""
        if user.courier_id is not None:
            courier_name = await self.db.scalar(
                select(Courier.name).where(Courier.id == user.courier_id)
            )
            if courier_name:
                return courier_name
        return user.name or "משתמש"
