from __future__ import annotations


def test_profile_before_and_after_playing(client):
    client.add_user("u-alice", "Alice")

    before = client.api.get("/v1/users/me", headers=client.headers("u-alice")).json()
    assert before["user"] == {
        "id": "u-alice",
        "displayName": "Alice",
        "pointsBalance": 0,
        "isGuest": False,
        "bestScore": None,
    }

    client.submit("u-alice", client.start_run("u-alice"), 25, 60_000)

    after = client.api.get("/v1/users/me", headers=client.headers("u-alice")).json()
    assert after["user"]["pointsBalance"] == 25
    assert after["user"]["bestScore"]["bestScore"] == 25
    assert after["user"]["bestScore"]["achievedAt"].endswith("Z")


def test_rename(client):
    client.add_user("u-alice", "Alice")

    response = client.api.patch(
        "/v1/users/me", json={"displayName": "Alice_2"}, headers=client.headers("u-alice")
    )

    assert response.status_code == 200
    assert response.json()["user"]["displayName"] == "Alice_2"
    assert client.user_row("u-alice").display_name == "Alice_2"


def test_rename_collision_is_case_insensitive(client):
    client.add_user("u-alice", "Alice")
    client.add_user("u-bob", "Bob")

    response = client.api.patch(
        "/v1/users/me", json={"displayName": "aLiCe"}, headers=client.headers("u-bob")
    )

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "DISPLAY_NAME_TAKEN"
    assert client.user_row("u-bob").display_name == "Bob"


def test_rename_to_own_name_in_other_case(client):
    client.add_user("u-alice", "Alice")

    response = client.api.patch(
        "/v1/users/me", json={"displayName": "ALICE"}, headers=client.headers("u-alice")
    )

    assert response.status_code == 200


def test_rename_rejects_bad_names(client):
    client.add_user("u-alice", "Alice")

    for name in ["ab", "x" * 21, "spaces here", "semi;colon"]:
        response = client.api.patch(
            "/v1/users/me", json={"displayName": name}, headers=client.headers("u-alice")
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"


def test_run_history_pages_newest_first(client):
    client.add_user("u-alice", "Alice")
    for score in [1, 2, 3]:
        client.submit("u-alice", client.start_run("u-alice"), score, 60_000)

    first = client.api.get(
        "/v1/runs/history", params={"limit": 2}, headers=client.headers("u-alice")
    ).json()
    assert [run["score"] for run in first["runs"]] == [3, 2]
    assert first["hasMore"] is True

    second = client.api.get(
        "/v1/runs/history",
        params={"limit": 2, "cursor": first["nextCursor"]},
        headers=client.headers("u-alice"),
    ).json()
    assert [run["score"] for run in second["runs"]] == [1]
    assert second["hasMore"] is False
    assert second["nextCursor"] is None
    assert second["runs"][0]["durationMs"] == 60_000
    assert second["runs"][0]["flagReason"] is None


def test_run_history_includes_rejected_runs(client):
    client.add_user("u-alice", "Alice")
    client.submit("u-alice", client.start_run("u-alice"), 2000, 60_000)

    body = client.api.get("/v1/runs/history", headers=client.headers("u-alice")).json()

    assert body["runs"][0]["flagged"] is True
    assert body["runs"][0]["flagReason"] == "score_out_of_bounds"
