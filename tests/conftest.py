"""
Shared fixtures. Django is configured once for the adapter view tests.
"""

import os

import django
import pytest

from ros_testkit import World


def pytest_configure(config):
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")
    django.setup()


@pytest.fixture
def world() -> World:
    return World()


@pytest.fixture
def make_world():
    return World
