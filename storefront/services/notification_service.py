# storefront/services/notification_service.py
from storefront.celery_worker import celery_app
from storefront.data.database import SessionLocal
from storefront.data.models.ticket import TicketModel
from storefront.repos.ticket_repo import TicketRepo
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class NotificationService:
    """
    Powiadomienia o zakupach. Serwis tylko kolejkuje zadanie,
    tresc powstaje w workerze z zapisanego ticketu.
    """

    def __init__(self, task=None):
        self.task = task or send_purchase_notification_task

    def send_purchase_notification(self, user_id: int, ticket_code: str):
        logger.info(f"Kolejkuje powiadomienie o tickecie {ticket_code} dla uzytkownika {user_id}")
        self.task.delay(user_id, ticket_code)


def purchase_summary(ticket: TicketModel) -> str:
    lines = ", ".join(f"{i.title} x{i.quantity}" for i in ticket.items)
    summary = f"Ticket {ticket.code}: {lines}. Razem {ticket.total}"
    if ticket.failed_items:
        summary += f". Nie kupiono {len(ticket.failed_items)} produktow"
    return summary


@celery_app.task(name="storefront.services.notification_service.send_purchase_notification_task")
def send_purchase_notification_task(user_id: int, ticket_code: str):
    """
    Celery task - w prawdziwym systemie wysłałby email z ticketem.
    Teraz tylko loguje.
    """
    db = SessionLocal()
    try:
        ticket = TicketRepo(db).get_by_code(ticket_code)
        if not ticket:
            logger.warning(f"[NOTIFICATION] Ticket {ticket_code} nie istnieje, pomijam")
            return {"user_id": user_id, "ticket_code": ticket_code, "status": "skipped"}

        logger.info(f"[NOTIFICATION] {ticket.purchaser}: {purchase_summary(ticket)}")
    finally:
        db.close()

    return {"user_id": user_id, "ticket_code": ticket_code, "status": "sent"}
