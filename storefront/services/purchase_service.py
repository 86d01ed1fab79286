# storefront/services/purchase_service.py
import asyncio
import time
import uuid
from decimal import Decimal
from typing import Callable, List

from storefront.domain.errors import (
    CartDrainError,
    Conflict,
    EmptyCart,
    InsufficientStock,
    NoPurchasableItems,
    NotFound,
    ProductInactive,
    StorageTransientError,
)
from storefront.domain.schemas import (
    CartItemOut,
    CartOut,
    FailedItem,
    PaymentInfo,
    PurchaseResult,
    PurchasedItem,
    ShippingInfo,
    TicketCreate,
    TicketOut,
    Totals,
)
from storefront.domain.totals import calculate_totals, line_subtotal
from storefront.services.cart_store import CartStore
from storefront.services.inventory_ledger import InventoryLedger
from storefront.services.lock_service import LockService
from storefront.services.ticket_ledger import TicketLedger
from storefront.utils.logging import get_logger
from storefront.utils.retry import db_retry
from storefront.utils.settings import CHECKOUT_LOCK_TTL_SECONDS, TAX_RATE

logger = get_logger(__name__)

REASON_INSUFFICIENT_STOCK = "Niewystarczajacy stan magazynowy"
REASON_NOT_FOUND = "Produkt nie istnieje"
REASON_INACTIVE = "Produkt nieaktywny"
REASON_PROCESSING_ERROR = "Blad przetwarzania"


class PurchaseReconciler:
    """
    Zamiana aktywnego koszyka na ticket i pomniejszony koszyk.

    Baza gwarantuje atomowosc tylko per wiersz, wiec kolejnosc krokow jest
    ustalona: zdjecie stanow -> zapis ticketu -> czyszczenie koszyka.
    Awaria miedzy ticketem a koszykiem zostawia poprawny ticket i koszyk,
    ktory ponowiony checkout i tak pominie (pozycje kupione sa usuwane
    z koszyka, a to koszyk decyduje co kupujemy).

    Bledy pojedynczych pozycji to dane (lista failed), nie wyjatki.
    """

    def __init__(
        self,
        inventory: InventoryLedger,
        carts: CartStore,
        tickets: TicketLedger,
        tax_rate: Decimal = TAX_RATE,
        lock_service: LockService | None = None,
        lock_ttl: int = CHECKOUT_LOCK_TTL_SECONDS,
        notifier=None,
        drain_scheduler: Callable[[str], None] | None = None,
    ):
        self.inventory = inventory
        self.carts = carts
        self.tickets = tickets
        self.tax_rate = tax_rate
        self.lock_service = lock_service
        self.lock_ttl = lock_ttl
        self.notifier = notifier
        self.drain_scheduler = drain_scheduler

    async def checkout(
        self,
        user_id: int,
        user_email: str,
        shipping: Decimal = Decimal("0.00"),
        discount: Decimal = Decimal("0.00"),
        payment_method: str = "credit_card",
        shipping_info: ShippingInfo | None = None,
    ) -> PurchaseResult:
        #walidacja przed lockiem i zdjeciem stanow
        if shipping < 0 or discount < 0:
            raise ValueError("shipping i discount nie moga byc ujemne")

        logger.info(f"Rozpoczynam zakup dla uzytkownika {user_id} ({user_email})")

        cart = await self.carts.find_active_cart_for_user(user_id)
        if not cart or not cart.items:
            raise EmptyCart()

        token = uuid.uuid4().hex
        if self.lock_service:
            locked = await self.lock_service.acquire_checkout_lock(cart.cart_id, token, self.lock_ttl)
            if not locked:
                raise Conflict(f"Zakup z koszyka {cart.cart_id} jest juz w toku")

        try:
            if self.lock_service:
                #koszyk mogl zostac kupiony zanim dostalismy lock, czytamy go jeszcze raz
                cart = await self._reread_cart(user_id, cart.cart_id)

            return await self._reconcile(
                cart,
                user_id=user_id,
                user_email=user_email,
                shipping=shipping,
                discount=discount,
                payment_method=payment_method,
                shipping_info=shipping_info or ShippingInfo(),
            )
        finally:
            if self.lock_service:
                await self.lock_service.release_checkout_lock(cart.cart_id, token)

    async def _reread_cart(self, user_id: int, cart_id: int) -> CartOut:
        cart = await self.carts.find_active_cart_for_user(user_id)
        if not cart or not cart.items:
            logger.info(f"Koszyk {cart_id} zostal oprozniony przez rownolegly zakup")
            raise EmptyCart()
        if cart.cart_id != cart_id:
            raise Conflict(f"Aktywny koszyk uzytkownika {user_id} zmienil sie w trakcie zakupu")
        return cart

    async def _reconcile(
        self,
        cart: CartOut,
        user_id: int,
        user_email: str,
        shipping: Decimal,
        discount: Decimal,
        payment_method: str,
        shipping_info: ShippingInfo,
    ) -> PurchaseResult:
        #fan-out po pozycjach, blad jednej nie przerywa pozostalych
        outcomes = await asyncio.gather(
            *(self._resolve_line(line) for line in cart.items),
            return_exceptions=True,
        )

        successful: List[PurchasedItem] = []
        failed: List[FailedItem] = []
        for line, outcome in zip(cart.items, outcomes):
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                #CancelledError i spolka nie sa bledem pozycji
                raise outcome
            if isinstance(outcome, Exception):
                logger.error(
                    f"Nieoczekiwany blad dla produktu {line.product_id} w koszyku {cart.cart_id}: {outcome!r}"
                )
                outcome = self._failed(line, 0, REASON_PROCESSING_ERROR)

            if isinstance(outcome, PurchasedItem):
                successful.append(outcome)
            else:
                failed.append(outcome)

        if not successful:
            logger.info(f"Koszyk {cart.cart_id}: zaden produkt nie zostal kupiony")
            raise NoPurchasableItems(failed)

        totals = Totals(
            **calculate_totals(
                (item.subtotal for item in successful),
                tax_rate=self.tax_rate,
                shipping=shipping,
                discount=discount,
            )
        )

        ticket = await self._persist_ticket(
            TicketCreate(
                user_id=user_id,
                purchaser=user_email,
                cart_id=cart.cart_id,
                cart_version=cart.version,
                items=successful,
                failed_items=failed,
                totals=totals,
                status="completed",
                payment=PaymentInfo(
                    method=payment_method,
                    status="approved",
                    transaction_id=f"TXN-{int(time.time() * 1000)}",
                ),
                shipping_info=shipping_info,
            )
        )

        await self._drain_after_ticket(cart.cart_id, ticket, retained=[f.product_id for f in failed])
        await self._notify(user_id, ticket.code)

        logger.info(
            f"Zakup zakonczony, ticket {ticket.code}: "
            f"{len(successful)} kupionych, {len(failed)} nieudanych"
        )
        return PurchaseResult(
            ticket=ticket,
            successful=successful,
            failed=failed,
            message=purchase_message(len(successful), len(failed)),
        )

    async def _resolve_line(self, line: CartItemOut) -> PurchasedItem | FailedItem:
        product = line.product
        if product is None:
            return self._failed(line, 0, REASON_NOT_FOUND)
        if product.status != "active":
            return self._failed(line, product.stock, REASON_INACTIVE)

        #wstepny filtr ze snapshotu, decyduje i tak atomowy update
        if product.stock < line.quantity:
            return self._failed(line, product.stock, REASON_INSUFFICIENT_STOCK)

        try:
            updated = await self.inventory.decrement_stock(line.product_id, line.quantity)
        except InsufficientStock as e:
            return self._failed(line, e.available, REASON_INSUFFICIENT_STOCK)
        except NotFound:
            return self._failed(line, 0, REASON_NOT_FOUND)
        except ProductInactive:
            return self._failed(line, 0, REASON_INACTIVE)
        except StorageTransientError as e:
            logger.error(f"Blad bazy przy zdejmowaniu stanu produktu {line.product_id}: {e}")
            return self._failed(line, 0, REASON_PROCESSING_ERROR)

        #cena z chwili zdjecia stanu, nie z koszyka
        return PurchasedItem(
            product_id=updated.id,
            title=updated.title,
            price=updated.price,
            quantity=line.quantity,
            subtotal=line_subtotal(updated.price, line.quantity),
        )

    async def _persist_ticket(self, data: TicketCreate) -> TicketOut:
        try:
            return await self.tickets.create(data)
        except Exception:
            #stan juz zdjety, a ticketu nie ma - musi byc w logach do recznego uzgodnienia
            decremented = ", ".join(f"{i.product_id}x{i.quantity}" for i in data.items)
            logger.error(
                f"Zapis ticketu nie powiodl sie po zdjeciu stanu! "
                f"user={data.user_id} cart={data.cart_id} pozycje=[{decremented}]"
            )
            raise

    async def _drain_after_ticket(self, cart_id: int, ticket: TicketOut, retained: List[int]):
        try:
            await self._replace_cart_lines(cart_id, retained)
        except StorageTransientError as e:
            logger.error(f"Nie udalo sie oczyscic koszyka {cart_id} po tickecie {ticket.code}: {e}")
            if self.drain_scheduler:
                self.drain_scheduler(ticket.code)
                logger.info(f"Zlecono ponowne czyszczenie koszyka {cart_id} dla ticketu {ticket.code}")
            raise CartDrainError(ticket.code, cart_id) from e

    @db_retry()
    async def _replace_cart_lines(self, cart_id: int, retained: List[int]):
        return await self.carts.replace_line_items(cart_id, retained)

    async def _notify(self, user_id: int, ticket_code: str):
        if not self.notifier:
            return
        try:
            await asyncio.to_thread(self.notifier.send_purchase_notification, user_id, ticket_code)
        except Exception as e:
            #powiadomienie nie cofa zakupu
            logger.warning(f"Nie udalo sie zlecic powiadomienia dla ticketu {ticket_code}: {e}")

    @staticmethod
    def _failed(line: CartItemOut, available: int, reason: str) -> FailedItem:
        title = line.product.title if line.product else f"Produkt {line.product_id}"
        return FailedItem(
            product_id=line.product_id,
            title=title,
            requested_quantity=line.quantity,
            available_stock=available,
            reason=reason,
        )


def purchase_message(successful: int, failed: int) -> str:
    if failed == 0:
        return "Zakup zrealizowany. Wszystkie produkty zostaly kupione."

    if successful == 0:
        return "Nie udalo sie zrealizowac zakupu. Zaden produkt nie ma wystarczajacego stanu."

    return (
        f"Zakup zrealizowany czesciowo. Kupiono {successful} produktow, "
        f"{failed} produktow nie udalo sie kupic."
    )
