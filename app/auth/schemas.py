from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from app.core.enums import UserRole


class CurrentUser(BaseModel):
    """Session identity supplied by the external identity provider.
    school_id is None only for SUPER_ADMIN.
    """

    id: UUID
    role: str
    school_id: Optional[UUID] = None

    @property
    def is_super_admin(self) -> bool:
        return self.role == UserRole.SUPER_ADMIN.value

    def can_access_school(self, school_id: Optional[UUID]) -> bool:
        """Super admins reach every school; everyone else only their own."""
        if self.is_super_admin:
            return True
        return school_id is not None and school_id == self.school_id
