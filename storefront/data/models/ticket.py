# storefront/data/models/ticket.py
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from storefront.data.database import Base


class TicketModel(Base):
    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True)
    code = Column(String, nullable=False, unique=True)
    purchase_datetime = Column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
        default=lambda: datetime.now(timezone.utc),
    )
    purchaser = Column(String, nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    cart_id = Column(Integer, nullable=True)
    #wersja koszyka z chwili zakupu, drain rusza koszyk tylko w tej wersji
    cart_version = Column(Integer, nullable=True)

    status = Column(String, nullable=False, default="completed", index=True)  # pending, completed, cancelled, refunded
    amount = Column(Numeric(12, 2), nullable=False)

    #totals
    subtotal = Column(Numeric(12, 2), nullable=False)
    tax = Column(Numeric(12, 2), nullable=False, default=0)
    shipping = Column(Numeric(12, 2), nullable=False, default=0)
    discount = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False)

    #platnosc
    payment_method = Column(String, nullable=False, default="credit_card")
    payment_status = Column(String, nullable=False, default="approved")
    transaction_id = Column(String, nullable=True)

    #wysylka
    shipping_address = Column(String, nullable=True)
    shipping_city = Column(String, nullable=True)
    shipping_postal_code = Column(String, nullable=True)
    shipping_country = Column(String, nullable=True)

    items = relationship(
        "TicketItemModel",
        cascade="all, delete-orphan",
        order_by="TicketItemModel.id",
        lazy="selectin",
    )
    failed_items = relationship(
        "TicketFailedItemModel",
        cascade="all, delete-orphan",
        order_by="TicketFailedItemModel.id",
        lazy="selectin",
    )


class TicketItemModel(Base):
    """Snapshot produktu z chwili zakupu, bez zywej referencji."""

    __tablename__ = "ticket_items"

    id = Column(Integer, primary_key=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, nullable=False)

    title = Column(String, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    quantity = Column(Integer, nullable=False)
    subtotal = Column(Numeric(12, 2), nullable=False)


class TicketFailedItemModel(Base):
    __tablename__ = "ticket_failed_items"

    id = Column(Integer, primary_key=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, nullable=False)

    title = Column(String, nullable=False)
    requested_quantity = Column(Integer, nullable=False)
    available_stock = Column(Integer, nullable=False)
    reason = Column(String, nullable=False)
