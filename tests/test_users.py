"""
User endpoint tests — registration, login, profile lookups, the follow
graph, account deletion, and the metrics endpoint.
"""
import pytest
from httpx import AsyncClient

from conftest import FakeMediaStore, auth, register


# ---------------------------------------------------------------------------
# Register / login
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_register_user(async_client: AsyncClient):
    """Registering returns 201 with the profile and empty back-reference sets."""
    resp = await async_client.post("/api/v1/users/register", data={
        "firstname": "Ada",
        "lastname": "Lovelace",
        "username": "ada",
        "email": "ada@example.com",
        "password": "engine",
    })
    assert resp.status_code == 201
    user = resp.json()["data"]
    assert user["username"] == "ada"
    assert user["email"] == "ada@example.com"
    assert user["avatar"] is None
    assert user["posts"] == [] and user["followers"] == [] and user["following"] == []
    assert "password" not in user and "password_hash" not in user


@pytest.mark.asyncio
async def test_register_with_avatar(async_client: AsyncClient, media_store: FakeMediaStore):
    resp = await async_client.post(
        "/api/v1/users/register",
        data={
            "firstname": "Grace",
            "lastname": "Hopper",
            "username": "grace",
            "email": "grace@example.com",
            "password": "cobol",
        },
        files={"avatar": ("me.png", b"avatar bytes", "image/png")},
    )
    assert resp.status_code == 201
    assert resp.json()["data"]["avatar"].startswith("https://cdn.test/")
    assert len(media_store.objects) == 1


@pytest.mark.asyncio
async def test_register_missing_field(async_client: AsyncClient):
    resp = await async_client.post("/api/v1/users/register", data={
        "firstname": "No",
        "lastname": "Password",
        "username": "nopass",
        "email": "nopass@example.com",
    })
    assert resp.status_code == 422
    assert resp.json()["message"] == "Password is required"


@pytest.mark.asyncio
async def test_register_duplicate_username(async_client: AsyncClient):
    await register(async_client, "dup_user")
    resp = await async_client.post("/api/v1/users/register", data={
        "firstname": "Dup",
        "lastname": "User",
        "username": "dup_user",
        "email": "other@example.com",
        "password": "pw",
    })
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_register_duplicate_email(async_client: AsyncClient):
    await register(async_client, "first", email="same@example.com")
    resp = await async_client.post("/api/v1/users/register", data={
        "firstname": "Second",
        "lastname": "User",
        "username": "second",
        "email": "same@example.com",
        "password": "pw",
    })
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_login_and_me(async_client: AsyncClient):
    user = await register(async_client, "login_user", password="hunter2")

    resp = await async_client.post(
        "/api/v1/users/login", json={"username": "login_user", "password": "hunter2"}
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["token_type"] == "bearer"
    assert data["user"]["id"] == user["id"]

    me = await async_client.get(
        "/api/v1/users/me", headers={"Authorization": f"Bearer {data['access_token']}"}
    )
    assert me.status_code == 200
    assert me.json()["data"]["username"] == "login_user"


@pytest.mark.asyncio
async def test_login_wrong_password(async_client: AsyncClient):
    await register(async_client, "wrong_pw", password="right")
    resp = await async_client.post(
        "/api/v1/users/login", json={"username": "wrong_pw", "password": "wrong"}
    )
    assert resp.status_code == 401
    assert resp.json()["message"] == "Invalid username or password"


@pytest.mark.asyncio
async def test_login_unknown_user(async_client: AsyncClient):
    resp = await async_client.post(
        "/api/v1/users/login", json={"username": "nobody", "password": "x"}
    )
    assert resp.status_code == 401


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_user_not_found(async_client: AsyncClient):
    resp = await async_client.get("/api/v1/users/99999")
    assert resp.status_code == 404
    assert resp.json()["message"] == "User not found"


@pytest.mark.asyncio
async def test_search_users_partial_case_insensitive(async_client: AsyncClient):
    await register(async_client, "JohnSmith")
    await register(async_client, "johnny")
    await register(async_client, "mary")

    resp = await async_client.get("/api/v1/users/search", params={"username": "JOHN"})
    assert resp.status_code == 200
    page = resp.json()["data"]
    assert page["total"] == 2
    assert sorted(u["username"] for u in page["items"]) == ["JohnSmith", "johnny"]


@pytest.mark.asyncio
async def test_search_treats_wildcards_literally(async_client: AsyncClient):
    await register(async_client, "plain")
    resp = await async_client.get("/api/v1/users/search", params={"username": "%"})
    assert resp.json()["data"]["total"] == 0


# ---------------------------------------------------------------------------
# Follow graph
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_follow_user(async_client: AsyncClient):
    """Following writes both sides of the edge."""
    alice = await register(async_client, "alice")
    bob = await register(async_client, "bob")

    resp = await async_client.post(f"/api/v1/users/{bob['id']}/follow", headers=auth(alice["id"]))
    assert resp.status_code == 200
    assert resp.json()["message"] == "User followed successfully"
    assert resp.json()["data"]["following"] == [bob["id"]]

    bob_doc = (await async_client.get(f"/api/v1/users/{bob['id']}")).json()["data"]
    assert bob_doc["followers"] == [alice["id"]]

    followers = (await async_client.get(f"/api/v1/users/{bob['id']}/followers")).json()["data"]
    assert [u["id"] for u in followers] == [alice["id"]]
    following = (await async_client.get(f"/api/v1/users/{alice['id']}/following")).json()["data"]
    assert [u["id"] for u in following] == [bob["id"]]

    check = await async_client.get(f"/api/v1/users/{bob['id']}/is-following", headers=auth(alice["id"]))
    assert check.json()["data"] == {"following": True}


@pytest.mark.asyncio
async def test_follow_twice_reports_already_following(async_client: AsyncClient):
    alice = await register(async_client, "alice2")
    bob = await register(async_client, "bob2")
    await async_client.post(f"/api/v1/users/{bob['id']}/follow", headers=auth(alice["id"]))

    resp = await async_client.post(f"/api/v1/users/{bob['id']}/follow", headers=auth(alice["id"]))
    assert resp.status_code == 200
    assert resp.json()["message"] == "User is already being followed"

    bob_doc = (await async_client.get(f"/api/v1/users/{bob['id']}")).json()["data"]
    assert bob_doc["followers"] == [alice["id"]]


@pytest.mark.asyncio
async def test_follow_self_rejected(async_client: AsyncClient):
    alice = await register(async_client, "narcissus")
    resp = await async_client.post(f"/api/v1/users/{alice['id']}/follow", headers=auth(alice["id"]))
    assert resp.status_code == 422
    me = (await async_client.get(f"/api/v1/users/{alice['id']}")).json()["data"]
    assert me["followers"] == [] and me["following"] == []


@pytest.mark.asyncio
async def test_follow_missing_user(async_client: AsyncClient):
    alice = await register(async_client, "lonely")
    resp = await async_client.post("/api/v1/users/4040/follow", headers=auth(alice["id"]))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_unfollow(async_client: AsyncClient):
    alice = await register(async_client, "alice3")
    bob = await register(async_client, "bob3")
    await async_client.post(f"/api/v1/users/{bob['id']}/follow", headers=auth(alice["id"]))

    resp = await async_client.delete(f"/api/v1/users/{bob['id']}/follow", headers=auth(alice["id"]))
    assert resp.status_code == 200
    assert resp.json()["data"]["following"] == []
    bob_doc = (await async_client.get(f"/api/v1/users/{bob['id']}")).json()["data"]
    assert bob_doc["followers"] == []


@pytest.mark.asyncio
async def test_unfollow_never_followed_is_success(async_client: AsyncClient):
    alice = await register(async_client, "alice4")
    bob = await register(async_client, "bob4")
    resp = await async_client.delete(f"/api/v1/users/{bob['id']}/follow", headers=auth(alice["id"]))
    assert resp.status_code == 200
    assert resp.json()["success"] is True


# ---------------------------------------------------------------------------
# Account deletion
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_delete_account(async_client: AsyncClient, media_store: FakeMediaStore):
    """Deleting an account removes the user's content and every reference to them."""
    leaver = await register(async_client, "leaver")
    friend = await register(async_client, "friend")

    post = (await async_client.post(
        "/api/v1/posts",
        data={"title": "T", "content": "C"},
        files=[("photos", ("a.png", b"img", "image/png"))],
        headers=auth(leaver["id"]),
    )).json()["data"]
    friend_post = (await async_client.post(
        "/api/v1/posts", data={"title": "F", "content": "C"}, headers=auth(friend["id"])
    )).json()["data"]
    await async_client.post(
        f"/api/v1/posts/{friend_post['id']}/comments", json={"content": "bye"}, headers=auth(leaver["id"])
    )
    await async_client.post(f"/api/v1/posts/{friend_post['id']}/like", headers=auth(leaver["id"]))
    await async_client.post(f"/api/v1/users/{friend['id']}/follow", headers=auth(leaver["id"]))
    await async_client.post(f"/api/v1/users/{leaver['id']}/follow", headers=auth(friend["id"]))

    resp = await async_client.delete("/api/v1/users/me", headers=auth(leaver["id"]))
    assert resp.status_code == 200

    assert (await async_client.get(f"/api/v1/users/{leaver['id']}")).status_code == 404
    assert (await async_client.get(f"/api/v1/posts/{post['id']}")).status_code == 404
    assert media_store.objects == {}

    friend_doc = (await async_client.get(f"/api/v1/users/{friend['id']}")).json()["data"]
    assert friend_doc["followers"] == [] and friend_doc["following"] == []
    friend_post_doc = (await async_client.get(f"/api/v1/posts/{friend_post['id']}")).json()["data"]
    assert friend_post_doc["comments"] == []
    assert friend_post_doc["likes"] == []

    # The old token no longer resolves to a user.
    me = await async_client.get("/api/v1/users/me", headers=auth(leaver["id"]))
    assert me.status_code == 401


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_metrics_empty(async_client: AsyncClient):
    resp = await async_client.get("/api/v1/metrics")
    assert resp.status_code == 200
    data = resp.json()
    assert data["total_users"] == 0
    assert data["total_posts"] == 0
    assert data["avg_comments_per_post"] == 0


@pytest.mark.asyncio
async def test_metrics_counts(async_client: AsyncClient):
    alice = await register(async_client, "m_alice")
    bob = await register(async_client, "m_bob")
    post = (await async_client.post(
        "/api/v1/posts", data={"title": "T", "content": "C"}, headers=auth(alice["id"])
    )).json()["data"]
    await async_client.post(f"/api/v1/posts/{post['id']}/like", headers=auth(bob["id"]))
    for text in ("one", "two"):
        await async_client.post(
            f"/api/v1/posts/{post['id']}/comments", json={"content": text}, headers=auth(bob["id"])
        )
    await async_client.post(f"/api/v1/users/{alice['id']}/follow", headers=auth(bob["id"]))

    data = (await async_client.get("/api/v1/metrics")).json()
    assert data["total_users"] == 2
    assert data["total_posts"] == 1
    assert data["total_comments"] == 2
    assert data["total_post_likes"] == 1
    assert data["total_follow_edges"] == 1
    assert data["avg_comments_per_post"] == 2.0


@pytest.mark.asyncio
async def test_health(async_client: AsyncClient):
    resp = await async_client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"
