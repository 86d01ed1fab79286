# storefront/tasks/drain.py
from storefront.celery_worker import celery_app
from storefront.data.database import SessionLocal
from storefront.repos.cart_repo import CartRepo
from storefront.repos.ticket_repo import TicketRepo
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


def drain_cart_for_ticket(db, ticket_code: str) -> int:
    """
    Usuwa z koszyka ticketu pozycje kupione w tym tickecie.

    Koszyk jest ruszany tylko w wersji zapisanej na tickecie. Jesli wersja
    sie zmienila, koszyk byl juz oczyszczony albo uzytkownik go zmienil
    i jego pozycje zostaja nietkniete. Drugie wywolanie nic nie usuwa.
    """
    ticket = TicketRepo(db).get_by_code(ticket_code)
    if not ticket:
        logger.warning(f"Drain: ticket {ticket_code} nie istnieje")
        return 0
    if ticket.cart_id is None:
        return 0

    repo = CartRepo(db)
    cart = repo.get_cart(ticket.cart_id)
    if not cart or cart.status != "active":
        return 0

    expected_version = ticket.cart_version if ticket.cart_version is not None else cart.version
    if cart.version != expected_version:
        logger.warning(
            f"Drain: koszyk {cart.id} ma wersje {cart.version}, ticket {ticket_code} "
            f"widzial {expected_version}, pomijam"
        )
        return 0

    removed = 0
    for item in ticket.items:
        removed += repo.delete_cart_item(cart.id, item.product_id)

    remaining = repo.get_cart_items(cart.id)
    new_data = {"version": expected_version + 1}
    if not remaining:
        new_data["status"] = "completed"

    #zmiana koszyka w trakcie drainu, nic nie usuwamy
    if repo.update_cart_version(cart.id, expected_version, new_data) == 0:
        repo.rollback()
        logger.warning(f"Drain: koszyk {cart.id} zmienil sie w trakcie, pomijam")
        return 0
    repo.commit()

    logger.info(f"Drain: ticket {ticket_code}, koszyk {cart.id}, usunieto {removed} pozycji")
    return removed


@celery_app.task(
    name="storefront.tasks.drain.drain_cart_task",
    autoretry_for=(Exception,),
    retry_backoff=True,
    max_retries=10,
)
def drain_cart_task(ticket_code: str):
    logger.info(f"Drain cart task started for ticket {ticket_code}")

    db = SessionLocal()
    try:
        return drain_cart_for_ticket(db, ticket_code)
    finally:
        db.close()


def schedule_cart_drain(ticket_code: str):
    drain_cart_task.delay(ticket_code)
