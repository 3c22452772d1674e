import uuid
from typing import Optional
from sqlmodel import Field
from ember.models.base import TimestampMixin, SoftDeleteMixin


class User(TimestampMixin, SoftDeleteMixin, table=True):
    __tablename__ = "users"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    external_id: str = Field(unique=True, description="Identity provider subject")
    email: str
    token_budget: int = Field(default=8000, description="Wake prompt token budget")


class Profile(TimestampMixin, SoftDeleteMixin, table=True):
    __tablename__ = "profiles"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", index=True)

    name: str
    platform: Optional[str] = None
    is_default: bool = Field(default=False)
