from django.apps import AppConfig


class PaymentsConfig(AppConfig):  # Application configuration for the payments app
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'payments'
    verbose_name = 'Payments'

    _services = None

    @property
    def services(self):
        if self._services is None:
            from .container import PaymentServices
            self._services = PaymentServices.from_settings()
        return self._services

    @services.setter
    def services(self, value):
        self._services = value

    def reset_services(self):
        self._services = None


def get_services():
    from django.apps import apps
    return apps.get_app_config('payments').services
