from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional


@dataclass(frozen=True)
class GatewayProof:
    """Gateway-issued evidence of a completed checkout, verified by the ledger."""

    payment_id: str
    signature: str
    order_id: Optional[str] = None


@dataclass(frozen=True)
class CheckoutOptions:
    # amount is passed through exactly as the escrow order issued it (minor units)
    amount: Decimal
    currency: str
    order_id: str
    description: str = ''
    on_success: Optional[Callable[[GatewayProof], None]] = None
    on_cancel: Optional[Callable[[], None]] = None


@dataclass(frozen=True)
class GatewaySuccess:
    proof: GatewayProof
    cancelled = False


@dataclass(frozen=True)
class GatewayCancelled:
    """User dismissed the checkout (or it timed out). Not an error."""

    reason: str = 'dismissed'
    cancelled = True
