from django.apps import AppConfig


class CoreConfig(AppConfig):  # Application configuration for the core app
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'core'
    verbose_name = 'Core'
