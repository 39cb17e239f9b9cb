import logging
import time

import stripe
from django.conf import settings

from ..exceptions import GatewayError
from ..outcomes import GatewayCancelled, GatewayProof, GatewaySuccess
from .base import BaseCheckoutProvider

logger = logging.getLogger(__name__)


class StripeCheckoutProvider(BaseCheckoutProvider):
    """
    Stripe Checkout implementation of the escrow funding session.
    Creates a hosted Checkout Session, hands its URL to the presenter and
    polls the session until it is completed or expired.
    """

    name = 'stripe'

    def __init__(self, presenter=None, poll_interval=None, sleep=time.sleep, clock=time.monotonic, **kwargs):
        super().__init__(**kwargs)
        stripe.api_key = kwargs.get('api_key') or settings.STRIPE_SECRET_KEY
        self.success_url = kwargs.get('success_url', settings.STRIPE_SUCCESS_URL)
        self.cancel_url = kwargs.get('cancel_url', settings.STRIPE_CANCEL_URL)
        self.poll_interval = settings.GATEWAY_POLL_INTERVAL if poll_interval is None else poll_interval
        self.presenter = presenter or self._log_url
        self._sleep = sleep
        self._clock = clock

    def _run(self, options):
        session = self._create_session(options)
        self.presenter(session.url)

        deadline = None if self.timeout is None else self._clock() + self.timeout
        while True:
            session = self._retrieve(session.id)

            if session.status == 'complete' and session.payment_status in ('paid', 'no_payment_required'):
                payment_intent = getattr(session.payment_intent, 'id', session.payment_intent)
                return GatewaySuccess(GatewayProof(
                    payment_id=payment_intent or session.id,
                    signature=session.id,
                    order_id=options.order_id,
                ))
            if session.status == 'expired':
                return GatewayCancelled(reason='expired')
            if deadline is not None and self._clock() >= deadline:
                self._expire(session.id)
                return GatewayCancelled(reason='timeout')

            self._sleep(self.poll_interval)

    def _create_session(self, options):
        try:
            session = stripe.checkout.Session.create(
                mode='payment',
                line_items=[{
                    'price_data': {
                        'currency': options.currency.lower(),
                        # escrow orders are already issued in the smallest currency unit
                        'unit_amount': int(options.amount),
                        'product_data': {'name': options.description or 'Escrow funding'},
                    },
                    'quantity': 1,
                }],
                client_reference_id=options.order_id,
                metadata={
                    'order_id': options.order_id,
                    'escrow_funding': 'true',
                },
                success_url=self.success_url,
                cancel_url=self.cancel_url,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe API error creating checkout session: {str(e)}")
            raise GatewayError(f"Stripe checkout could not be started: {str(e)}") from e

        logger.info(f"Stripe Checkout Session created: {session.id} for order {options.order_id}")
        return session

    def _retrieve(self, session_id):
        try:
            return stripe.checkout.Session.retrieve(session_id)
        except stripe.StripeError as e:
            logger.error(f"Stripe error retrieving checkout session {session_id}: {str(e)}")
            raise GatewayError(f"Stripe checkout status unavailable: {str(e)}") from e

    def _expire(self, session_id):
        try:
            stripe.checkout.Session.expire(session_id)
            logger.info(f"Expired abandoned Stripe Checkout Session {session_id}")
        except stripe.StripeError as e:
            # Stripe expires open sessions on its own after 24h
            logger.warning(f"Could not expire Stripe Checkout Session {session_id}: {str(e)}")

    @staticmethod
    def _log_url(url):
        logger.info(f"Stripe checkout ready at {url}")
