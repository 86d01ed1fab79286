# storefront/services/cart_store.py
from decimal import Decimal
from typing import Callable, Iterable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from storefront.data.database import run_in_session
from storefront.data.models.cart import CartModel
from storefront.data.models.cart_item import CartItemModel
from storefront.domain.errors import Conflict, NotFound, ProductInactive
from storefront.domain.schemas import CartItemOut, CartOut, ProductOut
from storefront.repos.cart_repo import CartRepo
from storefront.repos.product_repo import ProductRepo
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class CartStore:
    """
    Koszyki uzytkownikow, prosty podzial cqrs:
    commands (create, add, set, remove, clear, replace) modyfikuja stan
    query (find_active, get) tylko odczyt

    Kazda komenda to jedna transakcja. Komendy uzytkownika ida przez
    optimistic locking na polu version, replace_line_items (po zakupie)
    podbija wersje bezwarunkowo.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    #query - odczyt
    async def find_active_cart_for_user(self, user_id: int) -> CartOut | None:
        def _find(db: Session) -> CartOut | None:
            cart = CartRepo(db).get_active_cart_by_user(user_id)
            return self._to_out(db, cart) if cart else None

        return await run_in_session(self.session_factory, _find)

    async def get_cart(self, cart_id: int) -> CartOut:
        def _get(db: Session) -> CartOut:
            return self._to_out(db, self._require_cart(CartRepo(db), cart_id))

        return await run_in_session(self.session_factory, _get)

    #commands
    async def create_cart(self, user_id: int) -> CartOut:
        """Idempotentne: jesli uzytkownik ma aktywny koszyk, zwraca go."""

        def _create(db: Session) -> CartOut:
            repo = CartRepo(db)
            existing = repo.get_active_cart_by_user(user_id)
            if existing:
                logger.info(f"Uzytkownik {user_id} ma juz aktywny koszyk {existing.id}")
                return self._to_out(db, existing)

            try:
                created = repo.create_cart(CartModel(user_id=user_id, status="active", version=1))
            except IntegrityError:
                #rownolegle utworzenie, unikalny indeks na aktywny koszyk
                repo.rollback()
                existing = repo.get_active_cart_by_user(user_id)
                if not existing:
                    raise
                return self._to_out(db, existing)

            logger.info(f"Utworzono nowy koszyk {created.id} dla uzytkownika {user_id}")
            return self._to_out(db, created)

        return await run_in_session(self.session_factory, _create)

    async def add_line_item(self, cart_id: int, product_id: int, quantity: int) -> CartOut:
        if quantity <= 0:
            raise ValueError("Ilosc musi byc wieksza niz 0")

        def _add(repo: CartRepo, cart: CartModel):
            product = ProductRepo(repo.db).get_product(product_id)
            if not product:
                raise NotFound(f"Produkt {product_id} nie istnieje")
            if product.status != "active":
                raise ProductInactive(f"Produkt {product_id} jest nieaktywny")

            existing_item = repo.get_cart_item(cart_id, product_id)
            if existing_item:
                logger.info(
                    f"Produkt {product_id} juz jest w koszyku {cart_id}, zwiekszam ilosc "
                    f"z {existing_item.quantity} do {existing_item.quantity + quantity}"
                )
                existing_item.quantity += quantity
                existing_item.price = product.price  # update ceny
                repo.add_cart_item(existing_item)
            else:
                logger.info(f"Dodaje produkt {product_id} do koszyka {cart_id}")
                repo.add_cart_item(
                    CartItemModel(
                        cart_id=cart_id,
                        product_id=product_id,
                        quantity=quantity,
                        price=product.price,
                    )
                )

        return await self._mutate(cart_id, _add)

    async def set_line_item_quantity(self, cart_id: int, product_id: int, quantity: int) -> CartOut:
        if quantity <= 0:
            return await self.remove_line_item(cart_id, product_id)

        def _set(repo: CartRepo, cart: CartModel):
            item = repo.get_cart_item(cart_id, product_id)
            if not item:
                raise NotFound(f"Produktu {product_id} nie ma w koszyku {cart_id}")
            item.quantity = quantity
            repo.add_cart_item(item)

        return await self._mutate(cart_id, _set)

    async def remove_line_item(self, cart_id: int, product_id: int) -> CartOut:
        def _remove(repo: CartRepo, cart: CartModel):
            logger.info(f"Usuwanie produktu {product_id} z koszyka {cart_id}")
            repo.delete_cart_item(cart_id, product_id)

        return await self._mutate(cart_id, _remove)

    async def clear_line_items(self, cart_id: int) -> CartOut:
        def _clear(repo: CartRepo, cart: CartModel):
            removed = repo.delete_all_items(cart_id)
            logger.info(f"Wyczyszczono koszyk {cart_id}, usunieto {removed} pozycji")

        return await self._mutate(cart_id, _clear)

    async def replace_line_items(self, cart_id: int, retained_product_ids: Iterable[int]) -> CartOut:
        """
        Zostawia w koszyku tylko pozycje z retained_product_ids, jedna transakcja.
        Pusty koszyk po zakupie przechodzi w status completed.
        """
        retained = list(retained_product_ids)

        def _replace(db: Session) -> CartOut:
            repo = CartRepo(db)
            self._require_cart(repo, cart_id)

            removed = repo.delete_items_except(cart_id, retained)
            remaining = repo.get_cart_items(cart_id)
            new_data = {} if remaining else {"status": "completed"}
            repo.bump_cart(cart_id, new_data)
            repo.commit()

            logger.info(
                f"Koszyk {cart_id} po zakupie: usunieto {removed} pozycji, "
                f"zostalo {len(remaining)}"
            )
            return self._to_out(db, repo.get_cart(cart_id))

        return await run_in_session(self.session_factory, _replace)

    #helpers
    async def _mutate(self, cart_id: int, change: Callable[[CartRepo, CartModel], None]) -> CartOut:
        def _run(db: Session) -> CartOut:
            repo = CartRepo(db)
            cart = self._require_cart(repo, cart_id)

            if cart.status != "active":
                raise ValueError("Koszyk nie moze byc modyfikowany")

            change(repo, cart)

            # Optimistic locking
            # np w bazie update set version 2 where id 1 and version 1
            rowcount = repo.update_cart_version(
                cart_id=cart.id,
                old_version=cart.version,
                new_data={"version": cart.version + 1},
            )
            if rowcount == 0:
                repo.rollback()
                raise Conflict(
                    "Konflikt wspolbieznosci - koszyk zostal zmodyfikowany przez inna operacje"
                )

            repo.commit()
            return self._to_out(db, repo.get_cart(cart_id))

        return await run_in_session(self.session_factory, _run)

    @staticmethod
    def _require_cart(repo: CartRepo, cart_id: int) -> CartModel:
        cart = repo.get_cart(cart_id)
        if not cart:
            raise NotFound(f"Koszyk {cart_id} nie istnieje")
        return cart

    @staticmethod
    def _to_out(db: Session, cart: CartModel) -> CartOut:
        #produkty pobierane jawnie po id, snapshot z chwili odczytu
        items = CartRepo(db).get_cart_items(cart.id)
        products = ProductRepo(db).get_products(i.product_id for i in items)
        total = sum((i.price * i.quantity for i in items), Decimal("0.00"))

        return CartOut(
            cart_id=cart.id,
            user_id=cart.user_id,
            status=cart.status,
            version=cart.version,
            items=[
                CartItemOut(
                    product_id=i.product_id,
                    quantity=i.quantity,
                    price=i.price,
                    product=(
                        ProductOut.model_validate(products[i.product_id])
                        if i.product_id in products
                        else None
                    ),
                )
                for i in items
            ],
            total=total,
        )
