from dealdesk.services.banks_service import create_bank, match_bank, similarity


def test_bank_crud(client, admin_headers, user_headers):
    payload = {"name": "HDFC Bank", "brandColor": "#004c8f"}
    assert client.post("/api/admin/banks", json=payload, headers=user_headers).status_code == 401

    created = client.post("/api/admin/banks", json=payload, headers=admin_headers)
    assert created.status_code == 200
    bank = created.json()
    assert bank["slug"] == "hdfc-bank"
    assert bank["brandColor"] == "#004c8f"

    listing = client.get("/api/admin/banks?stats=true").json()
    assert listing[0]["postsCount"] == 0

    updated = client.put(
        f"/api/admin/banks/{bank['id']}", json={"name": "HDFC"}, headers=admin_headers
    )
    assert updated.json()["slug"] == "hdfc"
    assert updated.json()["brandColor"] == "#004c8f"

    deleted = client.delete(f"/api/admin/banks/{bank['id']}", headers=admin_headers)
    assert deleted.json() == {"success": True, "message": 'Bank "HDFC" deleted successfully'}
    assert client.get(f"/api/admin/banks/{bank['id']}").status_code == 404


def test_duplicate_bank_conflicts(client, admin_headers):
    client.post("/api/admin/banks", json={"name": "Axis Bank"}, headers=admin_headers)
    response = client.post("/api/admin/banks", json={"name": "Axis Bank"}, headers=admin_headers)
    assert response.status_code == 409
    assert response.json() == {"error": "A bank with this name or slug already exists"}
    missing = client.post("/api/admin/banks", json={"logo": "x.png"}, headers=admin_headers)
    assert missing.status_code == 400


def test_delete_bank_with_posts_is_refused(client, conn, admin_headers):
    bank = create_bank(conn, {"name": "ICICI Bank"})
    client.post(
        "/api/posts/create",
        json={"title": "Amazon Pay ICICI", "slug": "amazon-pay-icici", "bankId": bank["id"]},
        headers=admin_headers,
    )
    response = client.delete(f"/api/admin/banks/{bank['id']}", headers=admin_headers)
    assert response.status_code == 409
    assert response.json()["postsCount"] == 1
    assert client.get(f"/api/admin/banks/{bank['id']}").json()["postsCount"] == 1


def test_match_bank_exact_alias_fuzzy_none(conn):
    hdfc = create_bank(conn, {"name": "HDFC Bank"})
    amex = create_bank(conn, {"name": "American Express"})
    create_bank(conn, {"name": "Axis Bank"})

    exact = match_bank(conn, "hdfc bank")
    assert (exact.match_type, exact.confidence, exact.bank_id) == ("exact", 100, hdfc["id"])

    alias = match_bank(conn, "Amex")
    assert (alias.match_type, alias.confidence, alias.bank_id) == ("alias", 95, amex["id"])

    fuzzy = match_bank(conn, "American Expres")
    assert fuzzy.match_type == "fuzzy"
    assert fuzzy.bank_id == amex["id"]
    assert 70 < fuzzy.confidence < 100

    assert match_bank(conn, "Zeta").match_type == "none"
    assert match_bank(conn, "  ").confidence == 0


def test_alias_requires_stored_bank(conn):
    create_bank(conn, {"name": "HDFC Bank"})
    assert match_bank(conn, "kotak").match_type == "none"


def test_similarity():
    assert similarity("axis", "axis") == 1.0
    assert similarity("axis", "axis bank") == 0.7 + (4 / 9) * 0.3
    assert similarity("abc", "xyz") == 0.0
    assert similarity("kitten", "sitting") == 1 - 3 / 7


def test_fuzzy_confidence_follows_edit_distance(conn):
    federal = create_bank(conn, {"name": "Federal Bank"})
    create_bank(conn, {"name": "HDFC Bank"})

    match = match_bank(conn, "fedral bnk")
    assert match.match_type == "fuzzy"
    assert match.bank_id == federal["id"]
    assert match.confidence == 83
    assert match.alternatives == []
