import logging

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.utils.module_loading import import_string

from payments.exceptions import PaymentBadRequest

logger = logging.getLogger(__name__)


class PaymentProviderRegistry:
    """
    Builds gateway adapters from ``PAYMENT_PROVIDERS``.

    Every configured gateway stays reachable by name so callbacks and webhooks
    for orders created under a previously active gateway still reconcile;
    ``get()`` without a name returns the gateway used for new orders.
    """

    def __init__(self, config, active=None):  # Initialize instance
        self._providers = {}
        for name, options in config.items():
            backend = options.get("BACKEND")
            if not backend:
                raise ImproperlyConfigured(f"PAYMENT_PROVIDERS['{name}'] has no BACKEND")
            provider_class = import_string(backend)
            self._providers[name] = provider_class(options)

        self.active = active or next(iter(self._providers), None)
        if self.active not in self._providers:
            raise ImproperlyConfigured(f"PAYMENT_PROVIDER '{self.active}' is not configured")

    @classmethod
    def from_settings(cls):
        return cls(settings.PAYMENT_PROVIDERS, active=settings.PAYMENT_PROVIDER)

    @classmethod
    def from_providers(cls, providers, active=None):
        registry = cls.__new__(cls)
        registry._providers = {provider.name: provider for provider in providers}
        registry.active = active or providers[0].name
        return registry

    def get(self, name=None):
        name = name or self.active
        try:
            return self._providers[name]
        except KeyError:
            raise PaymentBadRequest(f"Unsupported payment provider: {name}")

    def names(self):
        return list(self._providers)
