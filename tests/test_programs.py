from dealdesk.services.programs_service import create_program, list_programs


def test_program_crud(client, admin_headers, user_headers):
    payload = {"name": "Marriott Bonvoy", "type": "hotel", "brandColor": "#8B2A51"}
    assert client.post("/api/admin/programs", json=payload, headers=user_headers).status_code == 401

    created = client.post("/api/admin/programs", json=payload, headers=admin_headers)
    assert created.status_code == 200
    program = created.json()
    assert program["slug"] == "marriott-bonvoy"
    assert program["type"] == "hotel"
    assert program["logo"] is None

    url = f"/api/admin/programs/{program['id']}"
    assert client.get(url).json()["postsCount"] == 0

    updated = client.put(
        url, json={"name": "Bonvoy", "type": "other"}, headers=admin_headers
    ).json()
    assert updated["slug"] == "bonvoy"
    assert updated["type"] == "other"
    assert updated["brandColor"] == "#8B2A51"

    deleted = client.delete(url, headers=admin_headers)
    assert deleted.json() == {"success": True, "message": 'Program "Bonvoy" deleted successfully'}
    missing = client.get(url)
    assert missing.status_code == 404
    assert missing.json() == {"error": "Program not found"}


def test_program_type_and_name_are_required(client, conn, admin_headers):
    no_type = client.post("/api/admin/programs", json={"name": "Taj"}, headers=admin_headers)
    assert no_type.status_code == 400
    assert no_type.json() == {
        "error": "Valid program type is required (airline, hotel, or other)"
    }
    bad_type = client.post(
        "/api/admin/programs", json={"name": "Taj", "type": "bank"}, headers=admin_headers
    )
    assert bad_type.status_code == 400
    no_name = client.post("/api/admin/programs", json={"type": "hotel"}, headers=admin_headers)
    assert no_name.json() == {"error": "Program name is required"}
    assert conn.execute("SELECT COUNT(*) FROM programs").fetchone()[0] == 0

    program = create_program(conn, {"name": "Taj Hotels", "type": "hotel"})
    bad_update = client.put(
        f"/api/admin/programs/{program['id']}", json={"type": "cruise"}, headers=admin_headers
    )
    assert bad_update.status_code == 400
    assert client.get(f"/api/admin/programs/{program['id']}").json()["type"] == "hotel"


def test_duplicate_program_conflicts(client, admin_headers):
    payload = {"name": "British Airways Avios", "type": "airline"}
    assert client.post("/api/admin/programs", json=payload, headers=admin_headers).status_code == 200
    response = client.post("/api/admin/programs", json=payload, headers=admin_headers)
    assert response.status_code == 409
    assert response.json() == {"error": "A program with this name or slug already exists"}


def test_list_filters_by_type(client, conn):
    create_program(conn, {"name": "Singapore Airlines KrisFlyer", "type": "airline"})
    create_program(conn, {"name": "ITC Hotels", "type": "hotel"})
    create_program(conn, {"name": "Accor Live Limitless", "type": "hotel"})

    names = [program["name"] for program in client.get("/api/admin/programs").json()]
    assert names == ["Accor Live Limitless", "ITC Hotels", "Singapore Airlines KrisFlyer"]
    hotels = client.get("/api/admin/programs?type=hotel").json()
    assert [program["name"] for program in hotels] == ["Accor Live Limitless", "ITC Hotels"]
    assert "postsCount" not in hotels[0]
    assert list_programs(conn, program_type="airline", include_stats=True)[0]["postsCount"] == 0


def test_posts_link_programs_and_block_delete(client, conn, admin_headers):
    program = create_program(conn, {"name": "Marriott Bonvoy", "type": "hotel"})
    created = client.post(
        "/api/posts/create",
        json={"title": "Bonvoy transfer bonus", "slug": "bonvoy-bonus", "programId": program["id"]},
        headers=admin_headers,
    )
    assert created.status_code == 200
    post = created.json()
    assert post["programId"] == program["id"]
    assert post["program"] == {
        "id": program["id"],
        "name": "Marriott Bonvoy",
        "slug": "marriott-bonvoy",
        "type": "hotel",
        "logo": None,
    }

    url = f"/api/admin/programs/{program['id']}"
    response = client.delete(url, headers=admin_headers)
    assert response.status_code == 409
    assert response.json()["postsCount"] == 1
    stats = client.get("/api/admin/programs?stats=true").json()
    assert stats[0]["postsCount"] == 1

    unknown = client.post(
        "/api/posts/create",
        json={"title": "Ghost", "slug": "ghost", "programId": "missing-program"},
        headers=admin_headers,
    )
    assert unknown.status_code == 400
    assert unknown.json() == {"error": "Post references an unknown bank, program or author"}
