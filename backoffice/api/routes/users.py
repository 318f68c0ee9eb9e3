from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from backoffice.api.deps import as_http_error, require_roles
from backoffice.core.database import get_db
from backoffice.core.errors import ServiceError
from backoffice.models.database import Role, User as DBUser
from backoffice.models.schemas import RoleName, User, UserCreate
from backoffice.services.user_service import UserService

router = APIRouter()


@router.post("/", response_model=User, status_code=201)
async def create_user(
    user_data: UserCreate,
    acting_user: DBUser = Depends(require_roles(Role.SUPER_ADMIN, Role.MANAGER)),
    db: Session = Depends(get_db),
):
    """Create a staff account"""
    try:
        return UserService(db).create_user(user_data)
    except ServiceError as e:
        raise as_http_error(e)


@router.get("/", response_model=List[User])
async def get_users(
    role: Optional[RoleName] = None,
    acting_user: DBUser = Depends(require_roles(Role.SUPER_ADMIN, Role.MANAGER)),
    db: Session = Depends(get_db),
):
    return UserService(db).list_users(role)
