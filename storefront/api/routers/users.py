# storefront/api/routers/users.py
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from storefront.api.deps import get_db
from storefront.domain.errors import Conflict, NotFound
from storefront.domain.schemas import UserCreate, UserRead
from storefront.services.user_service import UserService

router = APIRouter(prefix="/users", tags=["users"])


def get_user_service(db: Session = Depends(get_db)) -> UserService:
    return UserService(db)


@router.post("/", response_model=UserRead)
def register_user(payload: UserCreate, service: UserService = Depends(get_user_service)):
    """Ponowna rejestracja z tym samym id i emailem zwraca istniejacego uzytkownika."""
    try:
        return service.register(payload)
    except Conflict as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/{user_id}", response_model=UserRead)
def read_user(user_id: int, service: UserService = Depends(get_user_service)):
    try:
        return service.get(user_id)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
