"""Billing domain errors. Routers translate these into HTTP responses."""


class BillingError(Exception):
    """Base class for billing errors."""


class FreePlanMissingError(BillingError):
    """No active plan named ``free`` exists. Fatal for every scheduled job."""

    def __init__(self) -> None:
        super().__init__("Free plan not found")


class PlanNotFoundError(BillingError):
    """The requested plan does not exist or is inactive."""


class PlanInUseError(BillingError):
    """The plan is still referenced by subscriptions or profiles."""


class PaymentMethodRequiredError(BillingError):
    """A paid plan was requested but no payment method is stored."""


class InvalidSubscriptionStateError(BillingError):
    """The requested action is not valid for the subscription's current status."""


class UnknownFeatureError(BillingError, ValueError):
    """A plan's feature map contains a key outside the known feature set."""


class PaymentFailedError(BillingError):
    """The processor declined or could not take the charge for a purchase."""
