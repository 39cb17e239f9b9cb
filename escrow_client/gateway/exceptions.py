class GatewayError(Exception):
    """Checkout could not be started or returned an unusable response."""

    @property
    def error_type(self):
        return type(self).__name__


class SessionAlreadyUsed(GatewayError):
    """Checkout sessions are single-use; open a new one per funding attempt."""
