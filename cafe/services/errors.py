from __future__ import annotations


class OrderServiceError(Exception):
    """Base for every error raised by the order/inventory services."""


class NotFoundError(OrderServiceError):
    pass


class OrderNotFoundError(NotFoundError):
    def __init__(self, order_id: str) -> None:
        super().__init__(f"Pedido não encontrado: {order_id}")
        self.order_id = order_id


class ProductNotFoundError(NotFoundError):
    def __init__(self, product_id: str) -> None:
        super().__init__(f"Produto não encontrado: {product_id}")
        self.product_id = product_id


class UserNotFoundError(NotFoundError):
    def __init__(self, identifier: str) -> None:
        super().__init__(f"Usuário não encontrado: {identifier}")
        self.identifier = identifier


class OutOfStockError(OrderServiceError):
    def __init__(self, product_id: str, product_name: str, available: int, requested: int) -> None:
        super().__init__(
            f"Estoque insuficiente para o produto: {product_name}. Disponível: {available}, solicitado: {requested}"
        )
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        self.requested = requested


InsufficientStockError = OutOfStockError


class InactiveProductError(OrderServiceError):
    def __init__(self, product_id: str, product_name: str) -> None:
        super().__init__(f"Produto inativo: {product_name}")
        self.product_id = product_id
        self.product_name = product_name


class IllegalTransitionError(OrderServiceError):
    def __init__(self, current: object, target: object) -> None:
        super().__init__(f"Transição de status inválida de {_name(current)} para {_name(target)}")
        self.current = current
        self.target = target


class UnknownStatusError(IllegalTransitionError):
    def __init__(self, value: object) -> None:
        OrderServiceError.__init__(self, f"Status de pedido desconhecido: {value}")
        self.current = None
        self.target = value


class ForbiddenError(OrderServiceError):
    pass


class AccessDeniedError(ForbiddenError):
    def __init__(self, order_id: str) -> None:
        super().__init__(f"Acesso negado ao pedido: {order_id}")
        self.order_id = order_id


class OrderValidationError(OrderServiceError):
    pass


class ConcurrentUpdateError(OrderServiceError):
    pass


def _name(value: object) -> str:
    return str(getattr(value, "value", value))
