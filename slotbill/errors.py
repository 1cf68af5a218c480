"""
Billing error taxonomy.

Every error is terminal for the request that raised it: none of them leave a
partially credited payment behind. `status_code` is what the HTTP layer
answers with.
"""


class BillingError(Exception):
    status_code = 400

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.__class__.__name__)
        self.detail = detail or self.__class__.__name__

    @property
    def code(self) -> str:
        return self.__class__.__name__


class InvalidRequest(BillingError):
    status_code = 400


class Unauthenticated(BillingError):
    status_code = 401


class Forbidden(BillingError):
    status_code = 403


class RecordNotFound(BillingError):
    status_code = 404


class PricingNotConfigured(BillingError):
    """No price row for the requested slot type; never default to zero."""
    status_code = 400


class InvalidSignature(BillingError):
    status_code = 400


class MetadataTampering(BillingError):
    """Gateway intent does not correlate with the stored payment record."""
    status_code = 400


class PaymentNotSucceeded(BillingError):
    status_code = 409


class GatewayError(BillingError):
    status_code = 502


class GatewayNotConfigured(BillingError):
    status_code = 503
