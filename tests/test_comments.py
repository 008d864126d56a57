def _create_post(client, admin_headers):
    response = client.post(
        "/api/posts/create",
        json={"title": "Axis Atlas miles", "slug": "axis-atlas-miles"},
        headers=admin_headers,
    )
    return response.json()["id"]


def test_comment_flow(client, conn, admin_headers, user_headers):
    post_id = _create_post(client, admin_headers)

    first = client.post(
        "/api/comments", json={"postId": post_id, "content": "Worked for me"}, headers=user_headers
    )
    assert first.status_code == 200
    comment = first.json()
    assert comment["postId"] == post_id
    assert comment["authorName"] == "reader"
    assert comment["content"] == "Worked for me"

    client.post(
        "/api/comments", json={"postId": post_id, "content": "  Me too  "}, headers=admin_headers
    )

    comments = client.get(f"/api/posts/{post_id}/comments").json()
    assert [item["content"] for item in comments] == ["Worked for me", "Me too"]


def test_comment_requires_login_and_fields(client, conn, admin_headers, user_headers):
    post_id = _create_post(client, admin_headers)

    anonymous = client.post("/api/comments", json={"postId": post_id, "content": "hi"})
    assert anonymous.status_code == 401

    missing = client.post("/api/comments", json={"postId": post_id}, headers=user_headers)
    assert missing.status_code == 400
    assert missing.json() == {"error": "Missing required fields"}

    unknown = client.post(
        "/api/comments", json={"postId": "nope", "content": "hi"}, headers=user_headers
    )
    assert unknown.status_code == 404
    assert conn.execute("SELECT COUNT(*) FROM comments").fetchone()[0] == 0

    assert client.get("/api/posts/nope/comments").status_code == 404


def test_deleting_post_removes_comments(client, conn, admin_headers, user_headers):
    post_id = _create_post(client, admin_headers)
    client.post("/api/comments", json={"postId": post_id, "content": "hi"}, headers=user_headers)
    assert client.delete(f"/api/posts/{post_id}", headers=admin_headers).status_code == 200
    assert conn.execute("SELECT COUNT(*) FROM comments").fetchone()[0] == 0
