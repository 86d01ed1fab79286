# storefront/services/inventory_ledger.py
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from storefront.data.database import run_in_session
from storefront.data.models.product import ProductModel
from storefront.domain.errors import Conflict, InsufficientStock, NotFound, ProductInactive
from storefront.domain.schemas import ProductCreate, ProductOut
from storefront.repos.product_repo import ProductRepo
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class InventoryLedger:
    """
    Stan magazynowy produktow.

    Jedyny punkt synchronizacji miedzy rownoleglymi zakupami tego samego
    produktu to warunkowy update w bazie (decrement_stock). Nie ma tu
    osobnego odczytu i zapisu z poziomu aplikacji.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    #query
    async def get_product(self, product_id: int) -> ProductOut:
        def _get(db: Session) -> ProductOut:
            product = ProductRepo(db).get_product(product_id)
            if not product:
                raise NotFound(f"Produkt {product_id} nie istnieje")
            return ProductOut.model_validate(product)

        return await run_in_session(self.session_factory, _get)

    async def has_stock(self, product_id: int, quantity: int) -> bool:
        product = await self.get_product(product_id)
        return product.stock >= quantity

    #commands
    async def decrement_stock(self, product_id: int, quantity: int) -> ProductOut:
        if quantity <= 0:
            raise ValueError("Ilosc musi byc wieksza niz 0")

        def _decrement(db: Session) -> ProductOut:
            repo = ProductRepo(db)
            rowcount = repo.decrement_stock(product_id, quantity)

            if rowcount == 0:
                #nic nie zdjete, sprawdz dlaczego
                repo.rollback()
                product = repo.get_product(product_id)
                if not product:
                    raise NotFound(f"Produkt {product_id} nie istnieje")
                if product.status != "active":
                    raise ProductInactive(f"Produkt {product_id} jest nieaktywny")
                raise InsufficientStock(product_id, quantity, product.stock)

            #odczyt w tej samej transakcji, cena i tytul z chwili zdjecia stanu
            product = repo.get_product(product_id)
            snapshot = ProductOut.model_validate(product)
            repo.commit()
            return snapshot

        snapshot = await run_in_session(self.session_factory, _decrement)
        logger.info(f"Zdjeto {quantity} szt. produktu {product_id}, pozostalo {snapshot.stock}")
        return snapshot

    async def restock(self, product_id: int, quantity: int) -> ProductOut:
        if quantity <= 0:
            raise ValueError("Ilosc musi byc wieksza niz 0")

        def _restock(db: Session) -> ProductOut:
            repo = ProductRepo(db)
            if repo.increment_stock(product_id, quantity) == 0:
                repo.rollback()
                raise NotFound(f"Produkt {product_id} nie istnieje")
            product = repo.get_product(product_id)
            snapshot = ProductOut.model_validate(product)
            repo.commit()
            return snapshot

        snapshot = await run_in_session(self.session_factory, _restock)
        logger.info(f"Uzupelniono produkt {product_id} o {quantity} szt., stan {snapshot.stock}")
        return snapshot

    async def set_status(self, product_id: int, status: str) -> ProductOut:
        if status not in ("active", "inactive"):
            raise ValueError(f"Nieznany status produktu: {status}")

        def _set(db: Session) -> ProductOut:
            repo = ProductRepo(db)
            if repo.set_status(product_id, status) == 0:
                repo.rollback()
                raise NotFound(f"Produkt {product_id} nie istnieje")
            product = repo.get_product(product_id)
            snapshot = ProductOut.model_validate(product)
            repo.commit()
            return snapshot

        snapshot = await run_in_session(self.session_factory, _set)
        logger.info(f"Produkt {product_id} ma teraz status {status}")
        return snapshot

    async def create_product(self, payload: ProductCreate) -> ProductOut:
        def _create(db: Session) -> ProductOut:
            product = ProductModel(
                title=payload.title,
                description=payload.description,
                code=payload.code.strip().upper(),
                category=payload.category,
                price=payload.price,
                stock=payload.stock,
                owner_id=payload.owner_id,
                status="active",
            )
            repo = ProductRepo(db)
            try:
                created = repo.create_product(product)
            except IntegrityError as e:
                repo.rollback()
                raise Conflict(f"Produkt o kodzie {product.code} juz istnieje") from e
            return ProductOut.model_validate(created)

        created = await run_in_session(self.session_factory, _create)
        logger.info(f"Utworzono produkt {created.id} ({created.code})")
        return created
