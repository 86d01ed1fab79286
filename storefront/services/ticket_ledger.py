# storefront/services/ticket_ledger.py
import math
import secrets
import string
import time
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from tenacity import RetryError, retry, retry_if_exception_type, stop_after_attempt

from storefront.data.database import run_in_session
from storefront.data.models.ticket import TicketFailedItemModel, TicketItemModel, TicketModel
from storefront.domain.errors import InternalError, TicketCodeCollision
from storefront.domain.schemas import (
    FailedItem,
    Pagination,
    PaymentInfo,
    PurchasedItem,
    SalesStats,
    ShippingInfo,
    TicketCreate,
    TicketOut,
    TicketPage,
    Totals,
)
from storefront.domain.totals import to_money
from storefront.repos.ticket_repo import TicketRepo
from storefront.utils.logging import get_logger
from storefront.utils.settings import TICKET_CODE_PREFIX

logger = get_logger(__name__)

_CODE_ALPHABET = string.ascii_uppercase + string.digits
DEFAULT_STATS_WINDOW = timedelta(days=30)
TICKET_STATUSES = ("pending", "completed", "cancelled", "refunded")


def as_utc(value: datetime) -> datetime:
    #naiwne daty traktujemy jako UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def generate_code(prefix: str = TICKET_CODE_PREFIX) -> str:
    #PREFIX-<epoch ms>-<9 znakow>
    suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(9))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}".upper()


class TicketLedger:
    """
    Niezmienne rekordy zakupow.

    Ticket po zapisie sie nie zmienia, poza jawnym przejsciem statusu.
    Unikalnosc kodu pilnuje unikalny indeks w bazie, przy kolizji
    generujemy nowy kod i probujemy jeszcze raz.
    """

    def __init__(self, session_factory: sessionmaker, code_prefix: str = TICKET_CODE_PREFIX):
        self.session_factory = session_factory
        self.code_prefix = code_prefix

    def new_code(self) -> str:
        return generate_code(self.code_prefix)

    #commands
    async def create(self, data: TicketCreate) -> TicketOut:
        #podany kod tylko przy pierwszej probie, po kolizji zawsze nowy
        codes = [data.code] if data.code else []
        try:
            ticket = await self._insert_with_retry(data, codes)
        except RetryError as e:
            raise InternalError("Nie udalo sie wygenerowac unikalnego kodu ticketu") from e

        logger.info(f"Ticket {ticket.code} utworzony dla {ticket.purchaser}, total {ticket.amount}")
        return ticket

    @retry(
        stop=stop_after_attempt(2),
        retry=retry_if_exception_type(TicketCodeCollision),
    )
    async def _insert_with_retry(self, data: TicketCreate, codes: list) -> TicketOut:
        code = (codes.pop(0) if codes else self.new_code()).upper()

        def _insert(db: Session) -> TicketOut:
            repo = TicketRepo(db)
            try:
                created = repo.create_ticket(self._to_model(data, code))
            except IntegrityError:
                repo.rollback()
                if repo.code_exists(code):
                    logger.warning(f"Kolizja kodu ticketu {code}")
                    raise TicketCodeCollision(code)
                raise
            return self._to_out(created)

        return await run_in_session(self.session_factory, _insert)

    async def update_status(self, code: str, status: str) -> TicketOut | None:
        if status not in TICKET_STATUSES:
            raise ValueError(f"Nieznany status ticketu: {status}")

        def _update(db: Session) -> TicketOut | None:
            ticket = TicketRepo(db).update_status(code.upper(), status)
            return self._to_out(ticket) if ticket else None

        ticket = await run_in_session(self.session_factory, _update)
        if ticket:
            logger.info(f"Status ticketu {ticket.code} -> {status}")
        return ticket

    #query
    async def find_by_code(self, code: str) -> TicketOut | None:
        def _find(db: Session) -> TicketOut | None:
            ticket = TicketRepo(db).get_by_code(code.upper())
            return self._to_out(ticket) if ticket else None

        return await run_in_session(self.session_factory, _find)

    async def find_by_user(self, user_id: int, page: int = 1, page_size: int = 10) -> TicketPage:
        if page < 1 or page_size < 1:
            raise ValueError("page i page_size musza byc >= 1")

        def _find(db: Session) -> TicketPage:
            repo = TicketRepo(db)
            tickets = repo.list_by_user(user_id, limit=page_size, offset=(page - 1) * page_size)
            total = repo.count_by_user(user_id)
            return TicketPage(
                tickets=[self._to_out(t) for t in tickets],
                pagination=Pagination(
                    current=page,
                    pages=math.ceil(total / page_size),
                    total=total,
                ),
            )

        return await run_in_session(self.session_factory, _find)

    async def aggregate_sales(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> SalesStats:
        """Statystyki tylko z ticketow completed, domyslnie ostatnie 30 dni."""
        end = as_utc(end) if end else datetime.now(timezone.utc)
        start = as_utc(start) if start else end - DEFAULT_STATS_WINDOW

        def _aggregate(db: Session) -> SalesStats:
            repo = TicketRepo(db)
            total_sales, total_tickets = repo.sales_totals(start, end)
            total_products = repo.count_sold_lines(start, end)

            total_sales = to_money(total_sales or 0)
            average = to_money(total_sales / total_tickets) if total_tickets else to_money(0)
            return SalesStats(
                total_sales=total_sales,
                total_tickets=total_tickets,
                average_ticket=average,
                total_products=total_products,
            )

        return await run_in_session(self.session_factory, _aggregate)

    #mapowanie
    @staticmethod
    def _to_model(data: TicketCreate, code: str) -> TicketModel:
        totals = data.totals
        ticket = TicketModel(
            code=code,
            purchaser=data.purchaser.strip().lower(),
            user_id=data.user_id,
            cart_id=data.cart_id,
            cart_version=data.cart_version,
            status=data.status,
            amount=totals.total,
            subtotal=totals.subtotal,
            tax=totals.tax,
            shipping=totals.shipping,
            discount=totals.discount,
            total=totals.total,
            payment_method=data.payment.method,
            payment_status=data.payment.status,
            transaction_id=data.payment.transaction_id or f"TXN-{int(time.time() * 1000)}",
            shipping_address=data.shipping_info.address,
            shipping_city=data.shipping_info.city,
            shipping_postal_code=data.shipping_info.postal_code,
            shipping_country=data.shipping_info.country,
            items=[
                TicketItemModel(
                    product_id=i.product_id,
                    title=i.title,
                    price=i.price,
                    quantity=i.quantity,
                    subtotal=i.subtotal,
                )
                for i in data.items
            ],
            failed_items=[
                TicketFailedItemModel(
                    product_id=f.product_id,
                    title=f.title,
                    requested_quantity=f.requested_quantity,
                    available_stock=f.available_stock,
                    reason=f.reason,
                )
                for f in data.failed_items
            ],
        )
        if data.purchase_datetime:
            ticket.purchase_datetime = data.purchase_datetime
        return ticket

    @staticmethod
    def _to_out(ticket: TicketModel) -> TicketOut:
        return TicketOut(
            id=ticket.id,
            code=ticket.code,
            purchase_datetime=ticket.purchase_datetime,
            purchaser=ticket.purchaser,
            user_id=ticket.user_id,
            cart_id=ticket.cart_id,
            status=ticket.status,
            amount=ticket.amount,
            totals=Totals(
                subtotal=ticket.subtotal,
                tax=ticket.tax,
                shipping=ticket.shipping,
                discount=ticket.discount,
                total=ticket.total,
            ),
            items=[PurchasedItem.model_validate(i) for i in ticket.items],
            failed_items=[FailedItem.model_validate(f) for f in ticket.failed_items],
            payment=PaymentInfo(
                method=ticket.payment_method,
                status=ticket.payment_status,
                transaction_id=ticket.transaction_id,
            ),
            shipping_info=ShippingInfo(
                address=ticket.shipping_address,
                city=ticket.shipping_city,
                postal_code=ticket.shipping_postal_code,
                country=ticket.shipping_country,
            ),
        )
