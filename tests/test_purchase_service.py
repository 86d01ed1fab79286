"""
Testy PurchaseReconciler.

Coverage:
- scenariusze zakupu (pelny, czesciowy, nic do kupienia, pusty koszyk)
- totals liczone tylko z kupionych pozycji
- koszyk po zakupie zawiera dokladnie pozycje nieudane
- bezpieczne ponowienie checkoutu
- bledy infrastruktury per pozycja
- lock checkoutu, czyszczenie koszyka, powiadomienia
"""

import asyncio
import logging
from decimal import Decimal

import pytest

from storefront.domain.errors import (
    CartDrainError,
    Conflict,
    EmptyCart,
    NoPurchasableItems,
    StorageTransientError,
)
from storefront.services.cart_store import CartStore
from storefront.services.inventory_ledger import InventoryLedger
from storefront.services.purchase_service import (
    REASON_INSUFFICIENT_STOCK,
    REASON_NOT_FOUND,
    REASON_PROCESSING_ERROR,
    PurchaseReconciler,
    purchase_message,
)
from storefront.services.ticket_ledger import TicketLedger
from storefront.tasks.drain import drain_cart_for_ticket


class FlakyInventory(InventoryLedger):
    """Inventory, ktore dla wybranych produktow rzuca podany wyjatek."""

    def __init__(self, session_factory, failing: dict):
        super().__init__(session_factory)
        self.failing = failing

    async def decrement_stock(self, product_id, quantity):
        if product_id in self.failing:
            raise self.failing[product_id]
        return await super().decrement_stock(product_id, quantity)


class BrokenCartStore(CartStore):
    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.replace_calls = 0

    async def replace_line_items(self, cart_id, retained_product_ids):
        self.replace_calls += 1
        raise StorageTransientError("database is locked")


class FakeLock:
    def __init__(self, available=True):
        self.available = available
        self.acquired = []
        self.released = []

    async def acquire_checkout_lock(self, cart_id, token, ttl):
        self.acquired.append(cart_id)
        return self.available

    async def release_checkout_lock(self, cart_id, token):
        self.released.append(cart_id)
        return True


class FailingTicketLedger(TicketLedger):
    async def create(self, data):
        raise StorageTransientError("connection reset")


class InterleavingLock(FakeLock):
    """Przed pierwszym przyznaniem locka wpuszcza caly inny checkout tego samego koszyka."""

    def __init__(self):
        super().__init__()
        self.reconciler = None
        self.interleaved = False

    async def acquire_checkout_lock(self, cart_id, token, ttl):
        if not self.interleaved:
            self.interleaved = True
            await self.reconciler.checkout(1, "other-tab@example.com")
        return await super().acquire_checkout_lock(cart_id, token, ttl)


class FakeNotifier:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    def send_purchase_notification(self, user_id, ticket_code):
        if self.fail:
            raise ConnectionError("broker down")
        self.sent.append((user_id, ticket_code))


def _cart_lines(carts, user_id):
    cart = asyncio.run(carts.find_active_cart_for_user(user_id))
    return {i.product_id: i.quantity for i in cart.items} if cart else None


# =============================================================================
# SCENARIUSZE
# =============================================================================


def test_partial_purchase(reconciler, carts, tickets, make_product, make_cart, stock_of):
    a = make_product(title="A", price="100.00", stock=5)
    b = make_product(title="B", price="30.00", stock=3)
    make_cart(1, [(a, 2, "100.00"), (b, 10, "30.00")])

    result = asyncio.run(reconciler.checkout(1, "buyer@example.com"))

    assert [(i.product_id, i.quantity) for i in result.successful] == [(a, 2)]
    assert [(f.product_id, f.title, f.requested_quantity, f.available_stock) for f in result.failed] == [
        (b, "B", 10, 3)
    ]
    assert result.failed[0].reason == REASON_INSUFFICIENT_STOCK
    assert [i.product_id for i in result.ticket.items] == [a]
    assert result.ticket.failed_items == result.failed
    assert result.message == purchase_message(1, 1)

    assert _cart_lines(carts, 1) == {b: 10}
    assert stock_of(a) == 3
    assert stock_of(b) == 3


def test_nothing_purchasable_creates_no_ticket(reconciler, carts, tickets, make_product, make_cart, stock_of):
    a = make_product(stock=0)
    make_cart(1, [(a, 1, "100.00")])

    with pytest.raises(NoPurchasableItems) as exc:
        asyncio.run(reconciler.checkout(1, "buyer@example.com"))

    assert exc.value.failed[0].available_stock == 0
    assert asyncio.run(tickets.find_by_user(1)).pagination.total == 0
    assert _cart_lines(carts, 1) == {a: 1}
    assert stock_of(a) == 0


def test_reference_totals(reconciler, carts, make_product, make_cart):
    a = make_product(price="100.00", stock=5)
    make_cart(1, [(a, 1, "100.00")])

    result = asyncio.run(reconciler.checkout(1, "buyer@example.com"))

    assert result.ticket.totals.model_dump() == {
        "subtotal": Decimal("100.00"),
        "tax": Decimal("21.00"),
        "shipping": Decimal("0.00"),
        "discount": Decimal("0.00"),
        "total": Decimal("121.00"),
    }
    assert result.ticket.amount == Decimal("121.00")
    assert result.failed == []
    assert result.message == purchase_message(1, 0)
    #koszyk oprozniony i zamkniety
    assert _cart_lines(carts, 1) is None


def test_totals_reconcile_over_many_lines(reconciler, make_product, make_cart):
    a = make_product(price="19.99", stock=10)
    b = make_product(price="5.01", stock=10)
    c = make_product(price="7.00", stock=0)
    make_cart(1, [(a, 3, "19.99"), (b, 2, "5.01"), (c, 1, "7.00")])

    result = asyncio.run(
        reconciler.checkout(1, "buyer@example.com", shipping=Decimal("10"), discount=Decimal("5"))
    )

    totals = result.ticket.totals
    assert totals.subtotal == sum(i.subtotal for i in result.successful) == Decimal("69.99")
    assert totals.tax == Decimal("14.70")
    assert totals.total == totals.subtotal + totals.tax + totals.shipping - totals.discount
    assert totals.total == Decimal("89.69")


@pytest.mark.parametrize("shipping, discount", [(Decimal("-1"), Decimal("0")), (Decimal("0"), Decimal("-0.01"))])
def test_negative_amounts_rejected_before_any_decrement(reconciler, tickets, make_product, make_cart, stock_of, shipping, discount):
    a = make_product(stock=5)
    make_cart(1, [(a, 1, "100.00")])

    with pytest.raises(ValueError):
        asyncio.run(reconciler.checkout(1, "buyer@example.com", shipping=shipping, discount=discount))

    assert stock_of(a) == 5
    assert asyncio.run(tickets.find_by_user(1)).pagination.total == 0


def test_empty_cart(reconciler, carts):
    with pytest.raises(EmptyCart):
        asyncio.run(reconciler.checkout(1, "buyer@example.com"))

    asyncio.run(carts.create_cart(1))
    with pytest.raises(EmptyCart):
        asyncio.run(reconciler.checkout(1, "buyer@example.com"))


def test_price_is_taken_at_decrement_time(reconciler, make_product, make_cart, set_price):
    a = make_product(price="100.00", stock=5)
    make_cart(1, [(a, 2, "100.00")])
    set_price(a, "80.00")

    result = asyncio.run(reconciler.checkout(1, "buyer@example.com"))

    assert result.ticket.items[0].price == Decimal("80.00")
    assert result.ticket.totals.subtotal == Decimal("160.00")


def test_missing_and_inactive_products_fail_per_line(reconciler, carts, make_product, make_cart):
    ok = make_product(stock=5)
    off = make_product(stock=5, status="inactive")
    make_cart(1, [(ok, 1, "100.00"), (off, 1, "100.00"), (999, 1, "100.00")])

    result = asyncio.run(reconciler.checkout(1, "buyer@example.com"))

    reasons = {f.product_id: f.reason for f in result.failed}
    assert set(reasons) == {off, 999}
    assert reasons[999] == REASON_NOT_FOUND
    assert _cart_lines(carts, 1) == {off: 1, 999: 1}


# =============================================================================
# PONOWIENIE
# =============================================================================


def test_retry_after_full_purchase_is_empty_cart(reconciler, make_product, make_cart, stock_of):
    a = make_product(stock=5)
    make_cart(1, [(a, 2, "100.00")])
    asyncio.run(reconciler.checkout(1, "buyer@example.com"))

    with pytest.raises(EmptyCart):
        asyncio.run(reconciler.checkout(1, "buyer@example.com"))
    assert stock_of(a) == 3


def test_retry_after_partial_purchase_never_decrements_twice(reconciler, tickets, make_product, make_cart, stock_of):
    a = make_product(stock=5)
    b = make_product(stock=3)
    make_cart(1, [(a, 2, "100.00"), (b, 10, "100.00")])
    asyncio.run(reconciler.checkout(1, "buyer@example.com"))

    with pytest.raises(NoPurchasableItems):
        asyncio.run(reconciler.checkout(1, "buyer@example.com"))

    assert stock_of(a) == 3
    assert stock_of(b) == 3
    assert asyncio.run(tickets.find_by_user(1)).pagination.total == 1


# =============================================================================
# WSPOLBIEZNOSC
# =============================================================================


def test_concurrent_checkouts_do_not_oversell(reconciler, tickets, make_product, make_cart, stock_of):
    a = make_product(stock=3)
    make_cart(1, [(a, 2, "100.00")])
    make_cart(2, [(a, 2, "100.00")])

    async def _both():
        return await asyncio.gather(
            reconciler.checkout(1, "one@example.com"),
            reconciler.checkout(2, "two@example.com"),
            return_exceptions=True,
        )

    results = asyncio.run(_both())

    bought = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, NoPurchasableItems)]
    assert len(bought) == 1
    assert len(rejected) == 1
    assert stock_of(a) == 1


# =============================================================================
# BLEDY INFRASTRUKTURY
# =============================================================================


@pytest.mark.parametrize(
    "error",
    [StorageTransientError("connection reset"), RuntimeError("boom")],
)
def test_item_infra_error_does_not_block_siblings(session_factory, carts, tickets, make_product, make_cart, stock_of, error):
    a = make_product(stock=5)
    b = make_product(stock=5)
    make_cart(1, [(a, 1, "100.00"), (b, 1, "100.00")])
    reconciler = PurchaseReconciler(
        inventory=FlakyInventory(session_factory, failing={b: error}),
        carts=carts,
        tickets=tickets,
        tax_rate=Decimal("0.21"),
    )

    result = asyncio.run(reconciler.checkout(1, "buyer@example.com"))

    assert [i.product_id for i in result.successful] == [a]
    assert [(f.product_id, f.reason, f.available_stock) for f in result.failed] == [
        (b, REASON_PROCESSING_ERROR, 0)
    ]
    assert stock_of(a) == 4
    assert stock_of(b) == 5


def test_cart_drain_failure_escalates_and_schedules_retry(session_factory, inventory, tickets, make_product, make_cart):
    a = make_product(stock=5)
    cart_id = make_cart(1, [(a, 2, "100.00")])
    broken = BrokenCartStore(session_factory)
    scheduled = []
    reconciler = PurchaseReconciler(
        inventory=inventory,
        carts=broken,
        tickets=tickets,
        tax_rate=Decimal("0.21"),
        drain_scheduler=scheduled.append,
    )

    with pytest.raises(CartDrainError) as exc:
        asyncio.run(reconciler.checkout(1, "buyer@example.com"))

    code = exc.value.ticket_code
    assert broken.replace_calls == 3
    assert scheduled == [code]
    assert asyncio.run(tickets.find_by_code(code)) is not None

    #zlecone czyszczenie jest idempotentne
    with session_factory() as db:
        assert drain_cart_for_ticket(db, code) == 1
    with session_factory() as db:
        assert drain_cart_for_ticket(db, code) == 0
    assert asyncio.run(CartStore(session_factory).get_cart(cart_id)).status == "completed"


def test_ticket_write_failure_is_logged_and_reraised(inventory, carts, session_factory, make_product, make_cart, stock_of, caplog):
    a = make_product(stock=5)
    make_cart(1, [(a, 2, "100.00")])
    reconciler = PurchaseReconciler(inventory, carts, FailingTicketLedger(session_factory))

    with caplog.at_level(logging.ERROR, logger="storefront"):
        with pytest.raises(StorageTransientError):
            asyncio.run(reconciler.checkout(1, "buyer@example.com"))

    #stan zdjety bez ticketu, koszyk nietkniety, zostaje slad w logach
    assert stock_of(a) == 3
    assert _cart_lines(carts, 1) == {a: 2}
    errors = [r.getMessage() for r in caplog.records if r.levelno == logging.ERROR]
    assert any("Zapis ticketu" in m and f"{a}x2" in m for m in errors)


def test_scheduled_drain_keeps_lines_changed_after_checkout(session_factory, inventory, carts, tickets, make_product, make_cart):
    a = make_product(stock=5)
    b = make_product(stock=3)
    cart_id = make_cart(1, [(a, 2, "100.00"), (b, 10, "100.00")])
    reconciler = PurchaseReconciler(
        inventory=inventory,
        carts=BrokenCartStore(session_factory),
        tickets=tickets,
        drain_scheduler=lambda code: None,
    )

    with pytest.raises(CartDrainError) as exc:
        asyncio.run(reconciler.checkout(1, "buyer@example.com"))

    #uzytkownik dodaje produkt zanim worker oczysci koszyk
    asyncio.run(carts.add_line_item(cart_id, a, 1))

    with session_factory() as db:
        assert drain_cart_for_ticket(db, exc.value.ticket_code) == 0
    assert _cart_lines(carts, 1) == {a: 3, b: 10}


# =============================================================================
# LOCK I POWIADOMIENIA
# =============================================================================


def test_checkout_lock_held_elsewhere(inventory, carts, tickets, make_product, make_cart, stock_of):
    a = make_product(stock=5)
    cart_id = make_cart(1, [(a, 1, "100.00")])
    lock = FakeLock(available=False)
    reconciler = PurchaseReconciler(inventory, carts, tickets, lock_service=lock)

    with pytest.raises(Conflict):
        asyncio.run(reconciler.checkout(1, "buyer@example.com"))

    assert lock.acquired == [cart_id]
    assert lock.released == []
    assert stock_of(a) == 5


def test_cart_bought_while_waiting_for_lock_is_not_bought_again(inventory, carts, tickets, make_product, make_cart, stock_of):
    a = make_product(stock=5)
    make_cart(1, [(a, 2, "100.00")])
    lock = InterleavingLock()
    reconciler = PurchaseReconciler(inventory, carts, tickets, lock_service=lock)
    lock.reconciler = reconciler

    with pytest.raises(EmptyCart):
        asyncio.run(reconciler.checkout(1, "buyer@example.com"))

    assert stock_of(a) == 3
    assert asyncio.run(tickets.find_by_user(1)).pagination.total == 1
    #oba checkouty oddaly lock
    assert len(lock.released) == 2


def test_checkout_lock_released_on_failure(inventory, carts, tickets, make_product, make_cart):
    a = make_product(stock=0)
    cart_id = make_cart(1, [(a, 1, "100.00")])
    lock = FakeLock()
    reconciler = PurchaseReconciler(inventory, carts, tickets, lock_service=lock)

    with pytest.raises(NoPurchasableItems):
        asyncio.run(reconciler.checkout(1, "buyer@example.com"))

    assert lock.released == [cart_id]


def test_notification_sent_after_purchase(inventory, carts, tickets, make_product, make_cart):
    a = make_product(stock=5)
    make_cart(1, [(a, 1, "100.00")])
    notifier = FakeNotifier()
    reconciler = PurchaseReconciler(inventory, carts, tickets, notifier=notifier)

    result = asyncio.run(reconciler.checkout(1, "buyer@example.com"))

    assert notifier.sent == [(1, result.ticket.code)]


def test_notification_failure_does_not_fail_purchase(inventory, carts, tickets, make_product, make_cart):
    a = make_product(stock=5)
    make_cart(1, [(a, 1, "100.00")])
    reconciler = PurchaseReconciler(inventory, carts, tickets, notifier=FakeNotifier(fail=True))

    result = asyncio.run(reconciler.checkout(1, "buyer@example.com"))

    assert result.ticket is not None


# =============================================================================
# KOMUNIKATY
# =============================================================================


def test_purchase_messages():
    assert "Wszystkie" in purchase_message(3, 0)
    assert "Zaden" in purchase_message(0, 2)
    partial = purchase_message(2, 1)
    assert "czesciowo" in partial
    assert "2" in partial and "1" in partial
