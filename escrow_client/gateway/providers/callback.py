import logging
import threading

from ..exceptions import GatewayError
from ..outcomes import GatewayCancelled, GatewayProof, GatewaySuccess
from ..serializers import CheckoutResponseSerializer
from .base import BaseCheckoutProvider

logger = logging.getLogger(__name__)


class CallbackCheckoutProvider(BaseCheckoutProvider):
    """
    Hosted checkout driven through a handler / ondismiss callback pair.

    `launcher` is the checkout SDK constructor: it receives
    `{amount, currency, order_id, description, handler, modal: {ondismiss}}`
    and returns an object exposing `.open()`. Callbacks may fire from any
    thread; the first one wins and later ones are ignored.
    """

    name = 'callback'

    def __init__(self, launcher=None, **kwargs):
        super().__init__(**kwargs)
        if launcher is None:
            raise GatewayError("Callback checkout requires a launcher (checkout SDK constructor)")
        self.launcher = launcher
        self._settled = threading.Event()
        self._settle_lock = threading.Lock()
        self._outcome = None
        self._error = None

    def _run(self, options):
        sdk_options = {
            'amount': options.amount,
            'currency': options.currency,
            'order_id': options.order_id,
            'description': options.description,
            'handler': self.handler,
            'modal': {'ondismiss': self.ondismiss},
        }

        checkout = self.launcher(sdk_options)
        checkout.open()

        if not self._settled.wait(self.timeout):
            if self._settle(GatewayCancelled(reason='timeout')):
                logger.warning(f"Checkout for order {options.order_id} timed out after {self.timeout}s")

        if self._error is not None:
            raise self._error
        return self._outcome

    def handler(self, response):
        """Checkout success callback."""
        serializer = CheckoutResponseSerializer(data=response or {})
        if not serializer.is_valid():
            logger.error(f"Checkout returned an unusable response: {serializer.errors}")
            self._settle(None, GatewayError(f"Invalid checkout response: {serializer.errors}"))
            return
        if not self._settle(GatewaySuccess(GatewayProof(**serializer.validated_data))):
            logger.warning("Ignoring checkout success callback for an already settled session")

    def ondismiss(self):
        """Checkout dismissed by the user."""
        if not self._settle(GatewayCancelled(reason='dismissed')):
            logger.debug("Ignoring dismiss callback for an already settled session")

    def _settle(self, outcome, error=None):
        with self._settle_lock:
            if self._settled.is_set():
                return False
            self._outcome = outcome
            self._error = error
            self._settled.set()
            return True
