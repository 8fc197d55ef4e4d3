"""Database module for order and payment persistence."""

from .models import (
    Order,
    Payment,
    ReconciliationLock,
    Base,
    PaymentState,
    utcnow,
)
from .session import (
    get_db,
    get_database_url,
    init_db,
    close_db,
    create_async_engine,
    get_async_session_factory,
    get_db_context,
)
from .repository import (
    OrderRepository,
    PaymentRepository,
)

__all__ = [
    # Models
    "Order",
    "Payment",
    "ReconciliationLock",
    "Base",
    "PaymentState",
    "utcnow",
    # Session management
    "get_db",
    "get_database_url",
    "init_db",
    "close_db",
    "create_async_engine",
    "get_async_session_factory",
    "get_db_context",
    # Repositories
    "OrderRepository",
    "PaymentRepository",
]
