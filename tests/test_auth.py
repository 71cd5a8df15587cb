from auth import hash_password, verify_password
from conftest import bearer

SIGNUP = {
    "name": "Nadia Khan",
    "father_name": "Imran Khan",
    "gender": "Female",
    "dob": "1996-03-14",
    "cnic": "3520212345671",
    "email": "Nadia.Khan@example.com",
    "password": "secret1",
    "confirm_password": "secret1",
}


def test_password_hashing_round_trip():
    stored = hash_password("hunter22", iterations=1000)
    assert stored.startswith("pbkdf2_sha256$1000$")
    assert verify_password("hunter22", stored)
    assert not verify_password("hunter23", stored)
    assert not verify_password("hunter22", "garbage")


def test_admin_login_and_me(client, admin):
    r = client.get("/api/auth/me", headers=admin)
    assert r.status_code == 200
    assert r.json()["role"] == "admin"


def test_wrong_password_is_rejected(client):
    r = client.post("/api/auth/login", json={"username": "admin", "password": "nope"})
    assert r.status_code == 401
    r = client.post("/api/auth/login", json={"username": "nobody@example.com", "password": "12345"})
    assert r.status_code == 401


def test_seeded_candidate_logs_in_with_demo_password(client, login):
    headers = login("ALEX.DOE@example.com")
    r = client.get("/api/auth/me", headers=headers)
    assert r.json()["name"] == "Alex Doe"
    assert r.json()["role"] == "candidate"


def test_missing_or_bad_token(client):
    assert client.get("/api/auth/me").status_code == 401
    assert client.get("/api/auth/me", headers=bearer("not-a-token")).status_code == 401


def test_signup_formats_cnic_and_returns_session(client, login):
    r = client.post("/api/auth/signup", json=SIGNUP)
    assert r.status_code == 200, r.text
    assert r.json()["role"] == "candidate"

    headers = login("nadia.khan@example.com", "secret1")
    assert client.get("/api/auth/me", headers=headers).json()["name"] == "Nadia Khan"

    again = client.post("/api/auth/signup", json=SIGNUP)
    assert again.status_code == 409


def test_signup_validation(client):
    cases = [
        ({"name": "  "}, "All fields are required."),
        ({"cnic": "12345"}, "Invalid CNIC format. Use 12345-1234567-1."),
        ({"email": "nadia@"}, "Please enter a valid email address."),
        ({"password": "abc", "confirm_password": "abc"}, "Password must be at least 6 characters."),
        ({"confirm_password": "secret2"}, "Passwords do not match."),
    ]
    for override, message in cases:
        r = client.post("/api/auth/signup", json={**SIGNUP, **override})
        assert r.status_code == 400, override
        assert r.json()["detail"] == message


def test_signup_claims_invited_candidate(client, admin):
    client.post("/api/candidates/invite", json={"email": "nadia.khan@example.com"}, headers=admin)
    r = client.post("/api/auth/signup", json=SIGNUP)
    assert r.status_code == 200

    rows = client.get("/api/candidates", params={"search": "nadia"}, headers=admin).json()
    assert len(rows) == 1
    assert rows[0]["name"] == "Nadia Khan"
    assert rows[0]["cnic"] == "35202-1234567-1"


def test_logout_revokes_token_and_clears_chat(client, demo):
    client.post("/api/chat", json={"message": "hello"}, headers=demo)
    r = client.post("/api/auth/logout", headers=demo)
    assert r.status_code == 200
    assert client.get("/api/auth/me", headers=demo).status_code == 401


def test_demo_login_reuses_demo_candidate(client):
    first = client.post("/api/auth/demo").json()
    second = client.post("/api/auth/demo").json()
    assert first["subject"] == second["subject"]
    assert first["token"] != second["token"]


def test_roles_are_enforced(client, demo, admin):
    assert client.get("/api/candidates", headers=demo).status_code == 403
    assert client.get("/api/me/interviews", headers=admin).status_code == 403


def test_admin_selects_organization(client, admin):
    orgs = client.get("/api/organizations").json()
    assert [o["name"] for o in orgs] == ["Innovate Inc.", "Tech Solutions LLC", "QuantumLeap Co."]

    r = client.put("/api/admin/organization", json={"organization_id": orgs[1]["id"]}, headers=admin)
    assert r.json()["name"] == "Tech Solutions LLC"
    assert client.get("/api/auth/me", headers=admin).json()["organization_id"] == orgs[1]["id"]

    assert client.put("/api/admin/organization", json={"organization_id": 999}, headers=admin).status_code == 400
    cleared = client.put("/api/admin/organization", json={"organization_id": None}, headers=admin)
    assert cleared.json()["organization_id"] is None
