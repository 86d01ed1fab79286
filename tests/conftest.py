import os

#przed importem storefront, settings czyta env przy imporcie
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("TAX_RATE", "0.21")
os.environ.setdefault("TICKET_CODE_PREFIX", "TICKET")

import itertools
from decimal import Decimal

import pytest
from sqlalchemy import update

import storefront.data.models  # noqa: F401
from storefront.data.database import Base, make_engine, make_session_factory
from storefront.data.models.cart import CartModel
from storefront.data.models.cart_item import CartItemModel
from storefront.data.models.product import ProductModel
from storefront.services.cart_store import CartStore
from storefront.services.inventory_ledger import InventoryLedger
from storefront.services.purchase_service import PurchaseReconciler
from storefront.services.ticket_ledger import TicketLedger


@pytest.fixture
def session_factory(tmp_path):
    """Plikowa baza sqlite, sesje z roznych watkow widza te same dane."""
    engine = make_engine(f"sqlite:///{tmp_path / 'storefront.db'}")
    Base.metadata.create_all(bind=engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def inventory(session_factory):
    return InventoryLedger(session_factory)


@pytest.fixture
def carts(session_factory):
    return CartStore(session_factory)


@pytest.fixture
def tickets(session_factory):
    return TicketLedger(session_factory, code_prefix="TICKET")


@pytest.fixture
def reconciler(inventory, carts, tickets):
    return PurchaseReconciler(
        inventory=inventory,
        carts=carts,
        tickets=tickets,
        tax_rate=Decimal("0.21"),
    )


@pytest.fixture
def make_product(session_factory):
    """Fixture: tworzy produkt bezposrednio w bazie, zwraca id."""
    counter = itertools.count(1)

    def _make(title="Keyboard", price="100.00", stock=5, status="active"):
        n = next(counter)
        with session_factory() as db:
            product = ProductModel(
                title=title,
                description="",
                code=f"P-{n:04d}",
                category="other",
                price=Decimal(price),
                stock=stock,
                status=status,
            )
            db.add(product)
            db.commit()
            db.refresh(product)
            return product.id

    return _make


@pytest.fixture
def stock_of(session_factory):
    def _stock(product_id):
        with session_factory() as db:
            return db.get(ProductModel, product_id).stock

    return _stock


@pytest.fixture
def set_price(session_factory):
    def _set(product_id, price):
        with session_factory() as db:
            db.execute(
                update(ProductModel).where(ProductModel.id == product_id).values(price=Decimal(price))
            )
            db.commit()

    return _set


@pytest.fixture
def make_cart(session_factory):
    """
    Fixture: aktywny koszyk z pozycjami [(product_id, quantity, price)].
    Pozycje wstawiane wprost, bez walidacji produktu.
    """

    def _make(user_id, lines):
        with session_factory() as db:
            cart = CartModel(user_id=user_id, status="active", version=1)
            db.add(cart)
            db.flush()
            for product_id, quantity, price in lines:
                db.add(
                    CartItemModel(
                        cart_id=cart.id,
                        product_id=product_id,
                        quantity=quantity,
                        price=Decimal(price),
                    )
                )
            db.commit()
            return cart.id

    return _make
