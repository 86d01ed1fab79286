# storefront/api/__init__.py
from fastapi import FastAPI
from sqlalchemy.orm import sessionmaker

from storefront.api.routers import carts, checkout, health, products, tickets, users
from storefront.data.database import Base, SessionLocal
from storefront.services.cart_store import CartStore
from storefront.services.inventory_ledger import InventoryLedger
from storefront.services.purchase_service import PurchaseReconciler
from storefront.services.ticket_ledger import TicketLedger
from storefront.utils.logging import get_logger
from storefront.utils.settings import TAX_RATE, TICKET_CODE_PREFIX

logger = get_logger(__name__)


def create_app(
    session_factory: sessionmaker | None = None,
    lock_service=None,
    notifier=None,
    drain_scheduler=None,
    init_db: bool = False,
) -> FastAPI:
    """
    Skladanie aplikacji. Serwisy sa tworzone raz i trzymane w app.state,
    testy podaja wlasna fabryke sesji i zaslepki.
    """
    session_factory = session_factory or SessionLocal

    if init_db:
        #import modeli rejestruje tabele w Base.metadata
        import storefront.data.models  # noqa: F401

        engine = session_factory.kw["bind"]
        logger.info(f"Tworzenie tabel: {list(Base.metadata.tables.keys())}")
        Base.metadata.create_all(bind=engine)

    app = FastAPI(
        title="Storefront Service",
        version="1.0.0",
    )

    inventory = InventoryLedger(session_factory)
    cart_store = CartStore(session_factory)
    ticket_ledger = TicketLedger(session_factory, code_prefix=TICKET_CODE_PREFIX)

    app.state.session_factory = session_factory
    app.state.inventory = inventory
    app.state.cart_store = cart_store
    app.state.ticket_ledger = ticket_ledger
    app.state.reconciler = PurchaseReconciler(
        inventory=inventory,
        carts=cart_store,
        tickets=ticket_ledger,
        tax_rate=TAX_RATE,
        lock_service=lock_service,
        notifier=notifier,
        drain_scheduler=drain_scheduler,
    )

    # Include routers
    app.include_router(health.router)
    app.include_router(users.router)
    app.include_router(products.router)
    app.include_router(carts.router)
    app.include_router(checkout.router)
    app.include_router(tickets.router)

    return app
