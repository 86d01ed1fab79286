# storefront/services/user_service.py
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.data.models.user import UserModel
from storefront.domain.errors import Conflict, NotFound
from storefront.domain.schemas import UserCreate, UserRead
from storefront.repos.user_repo import UserRepo
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class UserService:
    """
    Rejestr kupujacych. Rejestracja jest idempotentna po id,
    email jest unikalny i trzymany malymi literami.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = UserRepo(db)

    def register(self, payload: UserCreate) -> UserRead:
        email = payload.email.strip().lower()

        existing = self.repo.get_user(payload.id)
        if existing:
            if existing.email != email:
                raise Conflict(f"Uzytkownik {payload.id} istnieje z innym adresem email")
            return UserRead.model_validate(existing)

        if self.repo.get_by_email(email):
            raise Conflict(f"Email {email} jest juz zajety")

        try:
            created = self.repo.create_user(UserModel(id=payload.id, name=payload.name, email=email))
        except IntegrityError as e:
            #rownolegla rejestracja tego samego id lub emaila
            self.db.rollback()
            raise Conflict(f"Uzytkownik {payload.id} lub email {email} juz istnieje") from e

        logger.info(f"Zarejestrowano uzytkownika {created.id} ({email})")
        return UserRead.model_validate(created)

    def get(self, user_id: int) -> UserRead:
        user = self.repo.get_user(user_id)
        if not user:
            raise NotFound(f"Uzytkownik {user_id} nie istnieje")
        return UserRead.model_validate(user)
