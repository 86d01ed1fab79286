# storefront/api/deps.py
from fastapi import Request

from storefront.services.cart_store import CartStore
from storefront.services.inventory_ledger import InventoryLedger
from storefront.services.purchase_service import PurchaseReconciler
from storefront.services.ticket_ledger import TicketLedger


def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_inventory(request: Request) -> InventoryLedger:
    return request.app.state.inventory


def get_cart_store(request: Request) -> CartStore:
    return request.app.state.cart_store


def get_ticket_ledger(request: Request) -> TicketLedger:
    return request.app.state.ticket_ledger


def get_reconciler(request: Request) -> PurchaseReconciler:
    return request.app.state.reconciler
