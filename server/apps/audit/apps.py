"""Django app configuration for audit app."""

from django.apps import AppConfig


class AuditConfig(AppConfig):
    """Configuration for audit app."""

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'server.apps.audit'
    verbose_name = 'Audit log'
