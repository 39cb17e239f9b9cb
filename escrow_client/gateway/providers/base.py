import logging
import threading
from abc import ABC, abstractmethod

from django.conf import settings

from ..exceptions import SessionAlreadyUsed
from ..outcomes import GatewaySuccess

logger = logging.getLogger(__name__)


class BaseCheckoutProvider(ABC):
    """
    Abstract base class for hosted checkout sessions.

    A provider instance is one checkout session: `open` may be called once
    and blocks until the user completes or dismisses the checkout, returning
    GatewaySuccess(proof) or GatewayCancelled(reason).
    """

    name = None

    def __init__(self, **kwargs):
        """Initialize the checkout session with configuration."""
        self.config = kwargs
        timeout = kwargs.get('timeout', settings.GATEWAY_SESSION_TIMEOUT)
        self.timeout = timeout if timeout and timeout > 0 else None
        self._opened = False
        self._open_lock = threading.Lock()

    def open(self, options):
        """
        Run the checkout session.

        Args:
            options: CheckoutOptions (amount, currency, order_id, description,
                optional on_success/on_cancel observers)

        Returns:
            GatewaySuccess or GatewayCancelled
        """
        with self._open_lock:
            if self._opened:
                raise SessionAlreadyUsed(f"{self.name} checkout session for order {options.order_id} was already opened")
            self._opened = True

        logger.info(f"Opening {self.name} checkout for order {options.order_id}, amount: {options.amount} {options.currency}")
        outcome = self._run(options)

        if isinstance(outcome, GatewaySuccess):
            logger.info(f"Checkout for order {options.order_id} completed. Payment: {outcome.proof.payment_id}")
            if options.on_success:
                options.on_success(outcome.proof)
        else:
            logger.info(f"Checkout for order {options.order_id} cancelled ({outcome.reason})")
            if options.on_cancel:
                options.on_cancel()
        return outcome

    @property
    def is_used(self):
        return self._opened

    @abstractmethod
    def _run(self, options):
        """
        Present the checkout and wait for it to settle.

        Returns:
            GatewaySuccess or GatewayCancelled
        """
        pass
