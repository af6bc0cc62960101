from .product import Product
from .availability import ProductAvailability, PriceHistory
from .drop_signal import DropEvent, DropSignal, SignalType, encode_signal_value
from .drop_outcome import DropOutcome
from .watch import Watch

__all__ = [
    "Product",
    "ProductAvailability",
    "PriceHistory",
    "DropEvent",
    "DropSignal",
    "SignalType",
    "encode_signal_value",
    "DropOutcome",
    "Watch",
]
