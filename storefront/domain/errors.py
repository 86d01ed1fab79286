# storefront/domain/errors.py


class StorefrontError(Exception):
    """Bazowy wyjatek domeny sklepu."""


class NotFound(StorefrontError):
    pass


class Conflict(StorefrontError):
    pass


class InsufficientStock(StorefrontError):
    def __init__(self, product_id: int, requested: int, available: int):
        super().__init__(
            f"Niewystarczajacy stan produktu {product_id}: "
            f"zadano {requested}, dostepne {available}"
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class ProductInactive(StorefrontError):
    pass


class EmptyCart(StorefrontError):
    def __init__(self, message: str = "Koszyk jest pusty lub nie istnieje"):
        super().__init__(message)


class NoPurchasableItems(StorefrontError):
    """Zaden produkt z koszyka nie mogl zostac kupiony, lista failed jest dolaczona."""

    def __init__(self, failed: list, message: str = "Zaden produkt z koszyka nie ma wystarczajacego stanu"):
        super().__init__(message)
        self.failed = failed


class StorageTransientError(StorefrontError):
    pass


class TicketCodeCollision(StorefrontError):
    pass


class InternalError(StorefrontError):
    pass


class CartDrainError(InternalError):
    def __init__(self, ticket_code: str, cart_id: int):
        super().__init__(
            f"Ticket {ticket_code} zostal utworzony, ale nie udalo sie oczyscic koszyka {cart_id}"
        )
        self.ticket_code = ticket_code
        self.cart_id = cart_id
