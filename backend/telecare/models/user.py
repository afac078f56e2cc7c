from beanie import Document, Indexed
from pydantic import Field
from datetime import datetime, timezone
from telecare.constants import Role


class User(Document):
    """System user (parent/patient, doctor, admin).

    Accounts are created by the identity service; this service only reads them
    to resolve the bearer token's subject.
    """

    first_name: str | None = None
    last_name: str | None = None
    email: Indexed(str, unique=True)
    role: Role
    is_active: bool = True

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "users"

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p) or self.email
