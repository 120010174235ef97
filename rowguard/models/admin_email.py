"""Admin allow-list entries."""

from pydantic import field_validator
from sqlmodel import Field, SQLModel

from rowguard.models.base import TimestampMixin, UUIDMixin


class AdminEmail(UUIDMixin, TimestampMixin, SQLModel, table=True):
    """An email address whose owner is treated as an admin."""

    __tablename__ = "admin_emails"

    # Always stored lower-case
    email: str = Field(max_length=320, nullable=False, unique=True, index=True)
    note: str | None = Field(default=None, max_length=500)


class AdminEmailCreate(SQLModel):
    """Schema for adding an admin email."""

    email: str = Field(min_length=3, max_length=320)
    note: str | None = None

    @field_validator("email")
    @classmethod
    def _normalize(cls, value: str) -> str:
        value = value.strip().lower()
        if "@" not in value:
            raise ValueError("not an email address")
        return value
