"""
Root pytest configuration for the Django project.

pytest-django reads DJANGO_SETTINGS_MODULE from pyproject.toml; this
module only guarantees it for tools that import Django before pytest-django
has configured it. Project-wide fixtures live in app/conftest.py and the
MoMo fixtures in app/momo/conftest.py.
"""

import os

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")
