"""
Common test fixtures for Django REST Framework API tests.

Provides buyer, organizer and staff users plus a factory that returns a
Django test client authenticated with a JWT access token obtained from
``/api/token/``.
"""
import pytest
from django.contrib.auth.models import User
from django.test import Client

PASSWORD = "pass12345"


@pytest.fixture
def user(db):
    """Create a test user (the ticket buyer in most tests)."""
    return User.objects.create_user(username="u1", password=PASSWORD, email="u1@example.com")


@pytest.fixture
def other_user(db):
    return User.objects.create_user(username="u2", password=PASSWORD, email="u2@example.com")


@pytest.fixture
def organizer(db):
    return User.objects.create_user(username="host", password=PASSWORD, email="host@example.com")


@pytest.fixture
def staff_user(db):
    return User.objects.create_user(
        username="staff", password=PASSWORD, email="staff@example.com", is_staff=True
    )


@pytest.fixture
def client_for(db):
    """Return a callable that logs a user in with JWT and returns the client."""

    def _login(u):
        c = Client()
        resp = c.post(
            "/api/token/",
            {"username": u.username, "password": PASSWORD},
            content_type="application/json",
        )
        assert resp.status_code == 200
        c.defaults["HTTP_AUTHORIZATION"] = f"Bearer {resp.json()['access']}"
        return c

    return _login


@pytest.fixture
def auth_client(client_for, user):
    """Authenticate a test client as ``user``."""
    return client_for(user)
