"""
Payment provider factory.
Maps every ProviderId to the adapter that implements it.
"""

from typing import Callable, assert_never

from settlement.infrastructure.cash_provider import CashProvider
from settlement.infrastructure.paypal_provider import PaypalProvider
from settlement.infrastructure.payzone_provider import PayzoneProvider
from settlement.infrastructure.stripe_provider import StripeProvider
from settlement.models.enums import ProviderId
from settlement.services.interfaces.payment_provider import PaymentProvider

ProviderBuilder = Callable[[bool], PaymentProvider]


def _builder_for(provider_id: ProviderId) -> ProviderBuilder:
    # Adding a ProviderId member without a case here fails type checking
    match provider_id:
        case ProviderId.STRIPE:
            return lambda test_mode: StripeProvider()
        case ProviderId.PAYPAL:
            return lambda test_mode: PaypalProvider(test_mode=test_mode)
        case ProviderId.PAYZONE:
            return lambda test_mode: PayzoneProvider()
        case ProviderId.CASH:
            return lambda test_mode: CashProvider()
        case _:
            assert_never(provider_id)


PROVIDERS: dict[ProviderId, ProviderBuilder] = {provider_id: _builder_for(provider_id) for provider_id in ProviderId}


def parse_provider_id(value) -> ProviderId | None:
    """Known provider id for a stored/requested value, None for anything this build does not implement."""
    if isinstance(value, ProviderId):
        return value
    try:
        return ProviderId(str(value).upper())
    except ValueError:
        return None


def get_provider(provider_id: ProviderId, test_mode: bool = True) -> PaymentProvider:
    return PROVIDERS[provider_id](test_mode)
