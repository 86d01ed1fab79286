# storefront/repos/ticket_repo.py
from datetime import datetime
from decimal import Decimal
from typing import List

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from storefront.data.models.ticket import TicketItemModel, TicketModel


class TicketRepo:
    def __init__(self, db: Session):
        self.db = db

    def create_ticket(self, ticket: TicketModel) -> TicketModel:
        self.db.add(ticket)
        self.db.commit()
        self.db.refresh(ticket)
        return ticket

    def get_by_code(self, code: str) -> TicketModel | None:
        return self.db.execute(
            select(TicketModel).where(TicketModel.code == code)
        ).scalar_one_or_none()

    def code_exists(self, code: str) -> bool:
        return self.db.execute(
            select(TicketModel.id).where(TicketModel.code == code)
        ).first() is not None

    def list_by_user(self, user_id: int, limit: int, offset: int) -> List[TicketModel]:
        return self.db.execute(
            select(TicketModel)
            .where(TicketModel.user_id == user_id)
            .order_by(TicketModel.purchase_datetime.desc(), TicketModel.id.desc())
            .limit(limit)
            .offset(offset)
        ).scalars().all()

    def count_by_user(self, user_id: int) -> int:
        return self.db.execute(
            select(func.count(TicketModel.id)).where(TicketModel.user_id == user_id)
        ).scalar_one()

    def update_status(self, code: str, status: str) -> TicketModel | None:
        ticket = self.get_by_code(code)
        if ticket:
            ticket.status = status
            self.db.commit()
            self.db.refresh(ticket)
        return ticket

    def sales_totals(self, start: datetime, end: datetime) -> tuple[Decimal | None, int]:
        """(suma, liczba) z amount ticketow completed w zakresie dat."""
        row = self.db.execute(
            select(
                func.sum(TicketModel.amount),
                func.count(TicketModel.id),
            ).where(
                TicketModel.status == "completed",
                TicketModel.purchase_datetime >= start,
                TicketModel.purchase_datetime <= end,
            )
        ).one()
        return row[0], row[1]

    def count_sold_lines(self, start: datetime, end: datetime) -> int:
        return self.db.execute(
            select(func.count(TicketItemModel.id))
            .join(TicketModel, TicketModel.id == TicketItemModel.ticket_id)
            .where(
                TicketModel.status == "completed",
                TicketModel.purchase_datetime >= start,
                TicketModel.purchase_datetime <= end,
            )
        ).scalar_one()

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
