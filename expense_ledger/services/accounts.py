"""
Account Service

User registration and category management.

Categories are owned by exactly one user. Every category operation checks
ownership first and refuses another user's category with
OwnershipViolationError rather than pretending it does not exist.

DESIGN DECISION: A category with expenses cannot be deleted.
Cascading the delete would silently destroy ledger rows; the caller must
move or delete the expenses first.
"""

from typing import Optional
from uuid import UUID

import structlog

from expense_ledger.config import get_settings
from expense_ledger.errors import (
    CategoryInUseError,
    DuplicateError,
    NotFoundError,
    OwnershipViolationError,
)
from expense_ledger.models.ledger import Category, User
from expense_ledger.services.storage.guard import guarded
from expense_ledger.services.storage.interface import LedgerStoreInterface
from expense_ledger.validation.validator import input_errors


logger = structlog.get_logger(__name__)

STORE_NAME = "ledger"


class AccountService:
    """Users and their categories."""

    def __init__(
        self,
        ledger: LedgerStoreInterface,
        timeout: Optional[float] = None,
    ):
        self._ledger = ledger
        self._timeout = timeout if timeout is not None else get_settings().storage.timeout_seconds

    async def _call(self, coro):
        return await guarded(coro, STORE_NAME, self._timeout)

    # Users ---------------------------------------------------------------

    async def register_user(
        self,
        email: str,
        display_name: str,
        credential_hash: str = "",
    ) -> User:
        """
        Create a user.

        Raises:
            InvalidInputError: Malformed email or display name
            DuplicateError: Email already registered (case-insensitive)
        """
        with input_errors():
            user = User(email=email, display_name=display_name, credential_hash=credential_hash)

        if await self._call(self._ledger.find_user_by_email(user.email)) is not None:
            raise DuplicateError(f"Email already registered: {user.email}")

        saved = await self._call(self._ledger.save_user(user))
        logger.info("user_registered", user_id=str(saved.id))
        return saved

    async def get_user(self, user_id: UUID) -> User:
        user = await self._call(self._ledger.find_user(user_id))
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    # Categories ------------------------------------------------------------

    async def _owned_category(self, user_id: UUID, category_id: UUID) -> Category:
        category = await self._call(self._ledger.find_category(category_id))
        if category is None:
            raise NotFoundError("Category", category_id)
        if category.user_id != user_id:
            raise OwnershipViolationError("Category", category_id)
        return category

    async def _ensure_name_free(
        self,
        user_id: UUID,
        name: str,
        category_id: Optional[UUID] = None,
    ) -> None:
        for existing in await self._call(self._ledger.list_categories(user_id)):
            if existing.name == name and existing.id != category_id:
                raise DuplicateError(f"Category name already exists: {name}")

    async def create_category(
        self,
        user_id: UUID,
        name: str,
        color: Optional[str] = None,
        icon: Optional[str] = None,
    ) -> Category:
        """
        Create a category for the user.

        Raises:
            NotFoundError: Unknown user
            InvalidInputError: Name not 2-50 characters
            DuplicateError: The user already has a category with this name
        """
        await self.get_user(user_id)
        with input_errors():
            category = Category(user_id=user_id, name=name, color=color, icon=icon)

        await self._ensure_name_free(user_id, category.name)
        saved = await self._call(self._ledger.save_category(category))
        logger.info("category_created", user_id=str(user_id), category_id=str(saved.id))
        return saved

    async def rename_category(self, user_id: UUID, category_id: UUID, name: str) -> Category:
        category = await self._owned_category(user_id, category_id)
        with input_errors():
            renamed = Category.model_validate({**category.model_dump(), "name": name})

        if renamed.name == category.name:
            return category

        await self._ensure_name_free(user_id, renamed.name, category_id)
        return await self._call(self._ledger.save_category(renamed))

    async def list_categories(self, user_id: UUID) -> list[Category]:
        """The user's categories, sorted by name."""
        await self.get_user(user_id)
        categories = await self._call(self._ledger.list_categories(user_id))
        return sorted(categories, key=lambda c: c.name.lower())

    async def delete_category(self, user_id: UUID, category_id: UUID) -> None:
        """
        Delete an unused category.

        Raises:
            NotFoundError: Unknown category
            OwnershipViolationError: Category belongs to another user
            CategoryInUseError: At least one expense references the category
        """
        await self._owned_category(user_id, category_id)

        in_use = await self._call(self._ledger.count_category_expenses(category_id))
        if in_use:
            raise CategoryInUseError(category_id, in_use)

        await self._call(self._ledger.delete_category(category_id))
        logger.info("category_deleted", user_id=str(user_id), category_id=str(category_id))
