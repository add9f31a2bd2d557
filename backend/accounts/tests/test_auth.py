import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

User = get_user_model()


@pytest.fixture
def client():
    return APIClient()


@pytest.fixture
def user(db):
    return User.objects.create_user(
        username="driver",
        email="driver@example.com",
        password="examplepass",
        first_name="Dana",
        last_name="Driver",
    )


def test_login_with_email_returns_tokens_and_user_payload(client, user):
    response = client.post(
        "/api/auth/token/",
        {"email": "Driver@Example.com", "password": "examplepass"},
        format="json",
    )

    assert response.status_code == 200
    body = response.json()
    assert "access" in body and "refresh" in body
    assert body["user"]["email"] == "driver@example.com"


def test_login_with_username_still_works(client, user):
    response = client.post(
        "/api/auth/token/",
        {"username": "driver", "password": "examplepass"},
        format="json",
    )

    assert response.status_code == 200


def test_login_with_wrong_password_is_rejected(client, user):
    response = client.post(
        "/api/auth/token/",
        {"email": "driver@example.com", "password": "nope"},
        format="json",
    )

    assert response.status_code == 401


def test_login_without_identifier_is_rejected(client, user):
    response = client.post("/api/auth/token/", {"password": "examplepass"}, format="json")

    assert response.status_code == 400
    assert "email" in response.json()


def test_refresh_issues_new_access_token(client, user):
    tokens = client.post(
        "/api/auth/token/",
        {"email": "driver@example.com", "password": "examplepass"},
        format="json",
    ).json()

    response = client.post("/api/auth/refresh/", {"refresh": tokens["refresh"]}, format="json")

    assert response.status_code == 200
    assert "access" in response.json()


def test_me_requires_authentication(client):
    response = client.get("/api/auth/me/")

    assert response.status_code == 401


def test_me_returns_profile(client, user):
    client.force_authenticate(user)

    response = client.get("/api/auth/me/")

    assert response.status_code == 200
    assert response.json()["username"] == "driver"
