"""
Request helpers for API tests.
"""

PARTNER_ID = "1000001"
PARTNER_KEY = "test-partner-key"


def register(client, email, password="correct-horse", name=None):
    response = client.post("/api/auth/register", json={
        "email": email,
        "password": password,
        "confirm_password": password,
        "name": name,
    })
    assert response.status_code == 201, response.text
    return response.json()["user"]


def login(client, email, password="correct-horse"):
    response = client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return response.json()


def create_shop(client, name="Sari-Sari Store"):
    response = client.post("/api/shops", json={
        "name": name,
        "tin_number": "123456789012",
        "business_address": "Manila",
    })
    assert response.status_code == 201, response.text
    return response.json()["shop"]
