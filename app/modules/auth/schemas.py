from pydantic import BaseModel
from typing import Optional
from uuid import UUID

# Auth context schemas
class AuthContext(BaseModel):
    user_id: UUID
    tenant_id: Optional[UUID] = None
    user_role: Optional[str] = None
