from starlette import status


class StorefrontError(Exception):
    """
    Ошибка уровня приложения с готовым HTTP-статусом и текстом для клиента.
    Обработчик в main.py превращает её в {"success": false, "error": message}.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    message: str = "Internal server error"

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


# --- checkout ---

class CartUnavailable(StorefrontError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Cart is empty"


class EmptyCart(StorefrontError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Cart is empty"


class InvalidShippingAddress(StorefrontError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Invalid shipping address"


class OrderCreationFailed(StorefrontError):
    message = "Failed to create order"


class OrderItemsCreationFailed(StorefrontError):
    message = "Failed to create order items"


class CartClearFailed(StorefrontError):
    message = "Failed to clear cart"


# --- cart / orders ---

class ProductNotFound(StorefrontError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "Product not found"


class InsufficientStock(StorefrontError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Insufficient stock"


class InvalidQuantity(StorefrontError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Invalid quantity"


class CartItemNotFound(StorefrontError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "Cart item not found"


class OrderNotFound(StorefrontError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "Order not found"
