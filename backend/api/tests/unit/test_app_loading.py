"""
Unit tests for import order between the API app and the classes REST
framework loads from settings
"""
import os
import subprocess
import sys

import pytest
from django.conf import settings

from api.authentication import ModeratedJWTAuthentication
from api.pagination import StandardResultsSetPagination


def _fresh_interpreter(code):
    env = {**os.environ, 'DJANGO_SETTINGS_MODULE': os.environ['DJANGO_SETTINGS_MODULE']}
    return subprocess.run(
        [sys.executable, '-c', code],
        cwd=settings.BASE_DIR,
        env=env,
        capture_output=True,
        text=True,
        timeout=120,
    )


@pytest.mark.unit
class TestSettingsClassesImport:

    def test_settings_resolve_to_api_classes(self):
        from rest_framework.settings import api_settings

        assert api_settings.DEFAULT_PAGINATION_CLASS is StandardResultsSetPagination
        assert api_settings.DEFAULT_AUTHENTICATION_CLASSES == [ModeratedJWTAuthentication]

    @pytest.mark.parametrize('first_import', [
        'rest_framework.views',
        'rest_framework.generics',
        'api.services',
        'api.authentication',
    ])
    def test_cold_import_has_no_cycle(self, first_import):
        result = _fresh_interpreter(
            'import importlib, django\n'
            'django.setup()\n'
            f'importlib.import_module({first_import!r})\n'
            'import api.urls\n'
        )
        assert result.returncode == 0, result.stderr

    def test_manage_py_check(self):
        result = subprocess.run(
            [sys.executable, 'manage.py', 'check'],
            cwd=settings.BASE_DIR,
            env={**os.environ, 'DJANGO_SETTINGS_MODULE': os.environ['DJANGO_SETTINGS_MODULE']},
            capture_output=True,
            text=True,
            timeout=120,
        )
        assert result.returncode == 0, result.stderr
