"""Settings for production deployments."""

from decouple import Csv

from server.settings.components import config

DEBUG = False

ALLOWED_HOSTS = config('DOMAIN_NAME', cast=Csv())

SESSION_COOKIE_SECURE = True

CSRF_COOKIE_SECURE = True

SECURE_PROXY_SSL_HEADER = ('HTTP_X_FORWARDED_PROTO', 'https')
