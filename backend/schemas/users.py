# Pydantic schemas for user-related requests/responses
# fastapi-users provides the base schemas. account_id is assigned by an
# administrator, never through register or /users/me.

from typing import Optional
from uuid import UUID

from fastapi_users import schemas


class UserRead(schemas.BaseUser[UUID]):
    name: Optional[str] = None
    account_id: Optional[UUID] = None


class UserCreate(schemas.BaseUserCreate):
    name: Optional[str] = None


class UserUpdate(schemas.BaseUserUpdate):
    name: Optional[str] = None
