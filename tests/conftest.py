import pytest
from fastapi.testclient import TestClient

import main
from repository import InMemoryRepo


def movie_payload(**overrides):
    payload = {
        "title": "Dune",
        "description": "A noble family becomes embroiled in a war for the desert planet Arrakis.",
        "year": 2021,
        "director": "Denis Villeneuve",
        "genres": ["Sci-Fi", "Adventure"],
        "duration": 155,
        "rating": 8,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def repo():
    return InMemoryRepo()


@pytest.fixture
def client(repo):
    """API test client whose storage is a fresh InMemoryRepo."""
    main.app.dependency_overrides[main.get_repo] = lambda: repo
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def register(client, name="Alice", email="alice@example.com", password="secret123"):
    resp = client.post("/api/auth/register", json={"name": name, "email": email, "password": password})
    assert resp.status_code == 201, resp.text
    data = resp.json()["data"]
    return data["user"], {"Authorization": f"Bearer {data['token']}"}


@pytest.fixture
def alice(client):
    return register(client)


@pytest.fixture
def bob(client):
    return register(client, name="Bob", email="bob@example.com")


@pytest.fixture
def auth(alice):
    return alice[1]
