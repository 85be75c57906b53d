"""
Main settings file assembled with django-split-settings.

Components are included in order, then the environment file selected
by the `DJANGO_ENV` variable:

`DJANGO_ENV=production python manage.py runserver`
"""

from os import environ

import django_stubs_ext
from split_settings.tools import include

# Monkeypatching Django, so stubs will work for all generics,
# e.g. `admin.ModelAdmin[File]`
django_stubs_ext.monkeypatch()

# Managing environment via `DJANGO_ENV` variable:
environ.setdefault('DJANGO_ENV', 'development')
_ENV = environ['DJANGO_ENV']

_base_settings = (
    'components/common.py',
    'components/logging.py',
    'components/storages.py',
    'components/files.py',
    'components/api.py',
    # Select the right env:
    'environments/{0}.py'.format(_ENV),
)

include(*_base_settings)
