from django.conf import settings

from .base import BaseCheckoutProvider
from .callback import CallbackCheckoutProvider
from .stripe import StripeCheckoutProvider


def get_checkout_provider(provider_name=None, **kwargs) -> BaseCheckoutProvider:
    """
    Factory function to get a fresh checkout session.

    Args:
        provider_name: Name of the checkout provider (defaults to GATEWAY_PROVIDER)
        **kwargs: Provider configuration (launcher, presenter, timeout, ...)

    Returns:
        BaseCheckoutProvider: single-use checkout session
    """
    providers = {
        'callback': CallbackCheckoutProvider,
        'stripe': StripeCheckoutProvider,
    }

    name = provider_name or settings.GATEWAY_PROVIDER
    if name not in providers:
        raise ValueError(f"Unknown checkout provider: {name}")

    return providers[name](**kwargs)
