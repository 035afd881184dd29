from enum import Enum


class OrderType(str, Enum):
    DINEIN = "DINEIN"
    TAKEOUT = "TAKEOUT"
    DELIVERY = "DELIVERY"


class OrderStatus(str, Enum):
    RECIBIDO = "RECIBIDO"
    EN_PROCESO = "EN_PROCESO"
    LISTO_PARA_EMPACAR = "LISTO_PARA_EMPACAR"
    EMPACANDO = "EMPACANDO"
    LISTO_PARA_ENTREGAR = "LISTO_PARA_ENTREGAR"
    EN_REPARTO = "EN_REPARTO"
    ENTREGADO = "ENTREGADO"


class ItemStatus(str, Enum):
    EN_COLA = "EN_COLA"
    PENDIENTE = "PENDIENTE"
    EN_PREPARACION = "EN_PREPARACION"
    LISTO = "LISTO"


class Station(str, Enum):
    PLANCHA = "PLANCHA"
    FREIDORA = "FREIDORA"


class PaymentStatus(str, Enum):
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class PrintType(str, Enum):
    CUSTOMER = "customer"
    PACKAGING = "packaging"


def parse_enum(enum_cls, value):
    """Return the enum member for ``value`` or None when it is not a member"""
    if isinstance(value, enum_cls):
        return value
    if not isinstance(value, str):
        return None
    try:
        return enum_cls(value)
    except ValueError:
        return None
