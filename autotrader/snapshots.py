"""Last-seen open-order and order-history polls, kept between loop iterations."""
from dataclasses import dataclass, field

from .models import Orders


@dataclass
class SnapshotStore:
    """Only the immediately-previous poll of each kind is kept."""
    open_orders: Orders = field(default_factory=Orders)
    history: Orders = field(default_factory=Orders)
