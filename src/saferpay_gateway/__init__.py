# saferpay_gateway package
__version__ = "0.1.0"

from .config import GatewayConfig
from .connectors import (
    SaferpayClient,
    ProviderError,
    InitializeResponse,
    AssertResponse,
    CaptureResponse,
)
from .database import (
    Order,
    Payment,
    PaymentState,
    OrderRepository,
    PaymentRepository,
    init_db,
    close_db,
    get_db,
)
from .money import to_minor_units
from .locking import (
    LockManager,
    LockBackend,
    DatabaseLockBackend,
    RedisLockBackend,
    reconcile_lock_name,
)
from .hooks import AssertResultHooks, remember_registered_alias
from .services import (
    ReconciliationService,
    ReconciliationResult,
    ReconciliationState,
    RejectionReason,
)
from .checkout import (
    CheckoutService,
    SessionInitializer,
    OrderTemplater,
    OrderAlreadyPaidError,
)
from .gateway import SaferpayGateway, NotifyResponse
