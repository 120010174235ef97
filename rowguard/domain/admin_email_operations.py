"""Domain operations for the admin allow-list table."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rowguard.domain.base_operations import BaseOperations
from rowguard.models.admin_email import AdminEmail


class AdminEmailOperations(BaseOperations[AdminEmail]):
    """CRUD operations for AdminEmail."""

    def __init__(self) -> None:
        super().__init__(AdminEmail)

    async def get_by_email(self, db: AsyncSession, email: str) -> AdminEmail | None:
        statement = select(AdminEmail).where(AdminEmail.email == email.strip().lower())
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def is_listed(self, db: AsyncSession, email: str) -> bool:
        """Check whether an email is on the admin allow-list."""
        return await self.get_by_email(db, email) is not None

    async def add(self, db: AsyncSession, email: str, note: str | None = None) -> AdminEmail:
        """Add an email to the allow-list. Adding an existing email returns the existing row."""
        existing = await self.get_by_email(db, email)
        if existing:
            return existing
        admin_email = AdminEmail(email=email.strip().lower(), note=note)
        db.add(admin_email)
        await db.flush()
        await db.refresh(admin_email)
        return admin_email

    async def remove(self, db: AsyncSession, email: str) -> bool:
        """Remove an email from the allow-list. Returns False if it was not listed."""
        existing = await self.get_by_email(db, email)
        if not existing:
            return False
        await self.delete_obj(db, existing)
        return True

    async def list_all(self, db: AsyncSession) -> list[AdminEmail]:
        statement = select(AdminEmail).order_by(AdminEmail.email)
        result = await db.execute(statement)
        return list(result.scalars().all())


admin_email_ops = AdminEmailOperations()
