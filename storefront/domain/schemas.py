# storefront/domain/schemas.py
from pydantic import BaseModel, Field, ConfigDict, model_validator
from typing import List, Literal
from decimal import Decimal
from datetime import datetime


PaymentMethod = Literal["credit_card", "debit_card", "paypal", "cash", "transfer"]
TicketStatus = Literal["pending", "completed", "cancelled", "refunded"]


# =====================================================
# PRODUKTY
# =====================================================
class ProductCreate(BaseModel):
    """Schema dla tworzenia produktu."""

    title: str = Field(..., min_length=3, max_length=100)
    description: str = Field("", max_length=1000)
    code: str = Field(..., min_length=1)
    category: str = "other"
    price: Decimal = Field(..., ge=0, decimal_places=2)
    stock: int = Field(0, ge=0)
    owner_id: int | None = None


class ProductOut(BaseModel):
    """Snapshot produktu w chwili odczytu."""

    id: int
    title: str
    code: str
    category: str
    price: Decimal
    stock: int
    status: str
    owner_id: int | None = None

    model_config = ConfigDict(from_attributes=True)


class RestockIn(BaseModel):
    quantity: int = Field(..., gt=0)


class ProductStatusIn(BaseModel):
    status: Literal["active", "inactive"]


# =====================================================
# KOSZYK
# =====================================================
class ItemIn(BaseModel):
    """Schema dla dodawania produktu do koszyka."""

    product_id: int = Field(..., gt=0, description="ID produktu (musi być > 0)")
    quantity: int = Field(..., gt=0, description="Ilość produktu (musi być > 0)")


class QuantityIn(BaseModel):
    """Ilosc <= 0 usuwa pozycje z koszyka."""

    quantity: int


class CreateCartIn(BaseModel):
    """Schema dla tworzenia koszyka."""

    user_id: int = Field(..., gt=0, description="ID użytkownika (musi być > 0)")


class CartItemOut(BaseModel):
    """Schema dla produktu w koszyku (response)."""

    product_id: int
    quantity: int
    price: Decimal
    product: ProductOut | None = None


class CartOut(BaseModel):
    """Schema dla koszyka (response)."""

    cart_id: int
    user_id: int
    status: str
    version: int
    items: List[CartItemOut]
    total: Decimal


# =====================================================
# UZYTKOWNICY
# =====================================================
class UserCreate(BaseModel):
    """Schema dla tworzenia użytkownika."""

    id: int = Field(..., gt=0, description="ID użytkownika (musi być > 0)")
    name: str = Field(..., min_length=1, max_length=100, description="Imię użytkownika")
    email: str = Field(..., min_length=3, max_length=254)


class UserRead(BaseModel):
    """Schema dla użytkownika (response)."""

    id: int
    name: str
    email: str

    model_config = ConfigDict(from_attributes=True)


# =====================================================
# TICKETY
# =====================================================
class PurchasedItem(BaseModel):
    product_id: int
    title: str
    price: Decimal
    quantity: int = Field(..., ge=1)
    subtotal: Decimal = Field(..., ge=0)

    model_config = ConfigDict(from_attributes=True)


class FailedItem(BaseModel):
    product_id: int
    title: str
    requested_quantity: int
    available_stock: int
    reason: str

    model_config = ConfigDict(from_attributes=True)


class Totals(BaseModel):
    subtotal: Decimal = Field(..., ge=0)
    tax: Decimal = Field(..., ge=0)
    shipping: Decimal = Field(..., ge=0)
    discount: Decimal = Field(..., ge=0)
    total: Decimal = Field(..., ge=0)

    @model_validator(mode="after")
    def check_total(self):
        if self.total != self.subtotal + self.tax + self.shipping - self.discount:
            raise ValueError("total musi byc rowny subtotal + tax + shipping - discount")
        return self


class ShippingInfo(BaseModel):
    address: str | None = None
    city: str | None = None
    postal_code: str | None = None
    country: str | None = None


class PaymentInfo(BaseModel):
    method: PaymentMethod = "credit_card"
    status: Literal["pending", "approved", "rejected"] = "approved"
    transaction_id: str | None = None


class TicketCreate(BaseModel):
    """Dane do zapisu ticketu. code=None -> ledger generuje kod."""

    code: str | None = None
    user_id: int
    purchaser: str = Field(..., min_length=1)
    cart_id: int | None = None
    cart_version: int | None = None
    items: List[PurchasedItem] = Field(..., min_length=1)
    failed_items: List[FailedItem] = []
    totals: Totals
    status: TicketStatus = "completed"
    payment: PaymentInfo = PaymentInfo()
    shipping_info: ShippingInfo = ShippingInfo()
    purchase_datetime: datetime | None = None

    @model_validator(mode="after")
    def check_subtotal(self):
        if self.totals.subtotal != sum((i.subtotal for i in self.items), Decimal("0.00")):
            raise ValueError("subtotal musi byc suma subtotali pozycji")
        return self


class TicketOut(BaseModel):
    id: int
    code: str
    purchase_datetime: datetime
    purchaser: str
    user_id: int
    cart_id: int | None = None
    status: str
    amount: Decimal
    totals: Totals
    items: List[PurchasedItem]
    failed_items: List[FailedItem]
    payment: PaymentInfo
    shipping_info: ShippingInfo


class TicketStatusIn(BaseModel):
    status: TicketStatus


class Pagination(BaseModel):
    current: int
    pages: int
    total: int


class TicketPage(BaseModel):
    tickets: List[TicketOut]
    pagination: Pagination


class SalesStats(BaseModel):
    total_sales: Decimal
    total_tickets: int
    average_ticket: Decimal
    total_products: int


# =====================================================
# CHECKOUT
# =====================================================
class CheckoutIn(BaseModel):
    """Schema dla zakupu zawartosci aktywnego koszyka."""

    user_id: int = Field(..., gt=0)
    email: str = Field(..., min_length=3, max_length=254)
    shipping: Decimal = Field(Decimal("0.00"), ge=0)
    discount: Decimal = Field(Decimal("0.00"), ge=0)
    payment_method: PaymentMethod = "credit_card"
    shipping_info: ShippingInfo = ShippingInfo()


class PurchaseResult(BaseModel):
    ticket: TicketOut | None
    successful: List[PurchasedItem]
    failed: List[FailedItem]
    message: str


class CheckoutOut(BaseModel):
    message: str
    ticket: TicketOut
    failed_products: List[FailedItem] | None = None
