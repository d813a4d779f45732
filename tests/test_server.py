import json
import logging
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from rssagg.database import connect
from rssagg.server import create_app, main, respond_with_error, respond_with_json


@pytest.fixture
def queries():
    db = connect(":memory:")
    yield db
    db.__exit__(None, None, None)


@pytest.fixture
def client(queries):
    return create_app(queries).test_client()


def _make_user(client, name="alice"):
    response = client.post("/v1/users", data=json.dumps({"name": name}))
    assert response.status_code == 201
    return response.get_json()


def _auth(user):
    return {"Authorization": f"ApiKey {user['api_key']}"}


def _make_feed(client, user, name="news", url="http://example.com/rss"):
    response = client.post(
        "/v1/feeds", data=json.dumps({"name": name, "url": url}), headers=_auth(user)
    )
    assert response.status_code == 201
    return response.get_json()


def _parse_time(text):
    return datetime.fromisoformat(text.replace("Z", "+00:00"))


def test_respond_with_json_sets_status_and_body():
    response = respond_with_json(202, {"a": [1, 2]})
    assert response.status_code == 202
    assert response.content_type == "application/json"
    assert json.loads(response.get_data(as_text=True)) == {"a": [1, 2]}


def test_respond_with_json_escapes_html_characters():
    response = respond_with_json(200, "<a&b>")
    assert response.get_data(as_text=True) == '"\\u003ca\\u0026b\\u003e"'


def test_respond_with_json_unserialisable_is_500():
    response = respond_with_json(200, object())
    assert response.status_code == 500
    assert response.get_data() == b""


def test_respond_with_error_wraps_message(caplog):
    with caplog.at_level(logging.ERROR):
        response = respond_with_error(503, "down")
    assert response.status_code == 503
    assert json.loads(response.get_data(as_text=True)) == {"error": "down"}
    assert "Responding with 5XX error" in caplog.text


def test_respond_with_error_client_error_not_logged(caplog):
    with caplog.at_level(logging.ERROR):
        response = respond_with_error(404, "missing")
    assert response.status_code == 404
    assert "Responding with 5XX error" not in caplog.text


def test_healthz(client):
    response = client.get("/v1/healthz")
    assert response.status_code == 200
    assert response.get_json() == {}


def test_err_endpoint(client):
    response = client.get("/v1/err")
    assert response.status_code == 400
    assert response.get_json() == "it's dead, jim"


def test_create_and_get_user(client):
    user = _make_user(client, "alice")
    assert user["name"] == "alice"
    assert len(user["api_key"]) == 64
    response = client.get("/v1/users", headers=_auth(user))
    assert response.status_code == 200
    assert response.get_json() == user


def test_create_user_bad_json(client):
    response = client.post("/v1/users", data="{not json")
    assert response.status_code == 400
    assert response.get_json()["error"].startswith("Error parsing JSON")


def test_create_user_empty_body(client):
    response = client.post("/v1/users", data="")
    assert response.status_code == 400
    assert response.get_json()["error"].startswith("Error parsing JSON")


def test_create_user_name_must_be_string(client):
    response = client.post("/v1/users", data=json.dumps({"name": 5}))
    assert response.status_code == 400
    assert response.get_json()["error"].startswith("Error parsing JSON")


def test_missing_auth_header(client):
    response = client.get("/v1/users")
    assert response.status_code == 403
    assert response.get_json() == {"error": "Auth error: no authentication info found"}


def test_malformed_auth_header(client):
    response = client.get("/v1/users", headers={"Authorization": "Bearer token"})
    assert response.status_code == 403
    assert response.get_json() == {
        "error": "Auth error: malformed first part of auth header"
    }


def test_unknown_api_key(client):
    response = client.get("/v1/users", headers={"Authorization": "ApiKey placeholder"})
    assert response.status_code == 400
    assert response.get_json()["error"].startswith("couldn't get user:")


def test_create_and_list_feeds(client):
    user = _make_user(client)
    feed = _make_feed(client, user)
    assert feed["name"] == "news"
    assert feed["url"] == "http://example.com/rss"
    assert feed["user_id"] == user["id"]
    response = client.get("/v1/feeds")
    assert response.status_code == 201
    assert response.get_json() == [feed]


def test_list_feeds_empty(client):
    response = client.get("/v1/feeds")
    assert response.get_json() == []


def test_duplicate_feed_url(client):
    user = _make_user(client)
    _make_feed(client, user)
    response = client.post(
        "/v1/feeds",
        data=json.dumps({"name": "again", "url": "http://example.com/rss"}),
        headers=_auth(user),
    )
    assert response.status_code == 400
    assert response.get_json()["error"].startswith("yikes, feed not able to be created~:")


def test_feed_follow_lifecycle(client):
    user = _make_user(client)
    feed = _make_feed(client, user)
    response = client.post(
        "/v1/feed_follows", data=json.dumps({"feed_id": feed["id"]}), headers=_auth(user)
    )
    assert response.status_code == 201
    follow = response.get_json()
    assert follow["feed_id"] == feed["id"]
    assert follow["user_id"] == user["id"]

    listed = client.get("/v1/feed_follows", headers=_auth(user))
    assert listed.status_code == 201
    assert listed.get_json() == [follow]

    deleted = client.delete(f"/v1/feed_follows/{follow['id']}", headers=_auth(user))
    assert deleted.status_code == 200
    assert deleted.get_json() == {}
    assert client.get("/v1/feed_follows", headers=_auth(user)).get_json() == []


def test_feed_follow_missing_feed_id_fails(client):
    user = _make_user(client)
    response = client.post("/v1/feed_follows", data="{}", headers=_auth(user))
    assert response.status_code == 400
    assert response.get_json()["error"].startswith(
        "yikes, feed follow not able to be created~:"
    )


def test_feed_follow_invalid_uuid(client):
    user = _make_user(client)
    response = client.post(
        "/v1/feed_follows", data=json.dumps({"feed_id": "nope"}), headers=_auth(user)
    )
    assert response.status_code == 400
    assert response.get_json()["error"].startswith("Error parsing JSON")


def test_delete_feed_follow_bad_id(client):
    user = _make_user(client)
    response = client.delete("/v1/feed_follows/not-a-uuid", headers=_auth(user))
    assert response.status_code == 400
    assert response.get_json()["error"].startswith("Couldn't parse feed follow id:")


def test_delete_other_users_follow_keeps_it(client):
    owner = _make_user(client, "owner")
    other = _make_user(client, "other")
    feed = _make_feed(client, owner)
    follow = client.post(
        "/v1/feed_follows", data=json.dumps({"feed_id": feed["id"]}), headers=_auth(owner)
    ).get_json()
    response = client.delete(f"/v1/feed_follows/{follow['id']}", headers=_auth(other))
    assert response.status_code == 200
    assert client.get("/v1/feed_follows", headers=_auth(owner)).get_json() == [follow]


def test_posts_for_user_limited_and_newest_first(client, queries):
    user = _make_user(client)
    feed = _make_feed(client, user)
    client.post(
        "/v1/feed_follows", data=json.dumps({"feed_id": feed["id"]}), headers=_auth(user)
    )
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    created_ids = set()
    for index in range(12):
        post_id = uuid.uuid4()
        created_ids.add(str(post_id))
        queries.create_post(
            id=post_id,
            created_at=base,
            updated_at=base,
            title=f"post {index}",
            description=None,
            published_at=base + timedelta(hours=index),
            url=f"http://example.com/{index}",
            feed_id=uuid.UUID(feed["id"]),
        )
    response = client.get("/v1/posts", headers=_auth(user))
    assert response.status_code == 200
    posts = response.get_json()
    assert len(posts) == 10
    assert {post["id"] for post in posts} <= created_ids
    published = [_parse_time(post["published_at"]) for post in posts]
    assert published == sorted(published, reverse=True)
    assert posts[0]["title"] == "post 11"
    assert posts[0]["description"] is None


def test_posts_for_user_without_follows(client):
    user = _make_user(client)
    response = client.get("/v1/posts", headers=_auth(user))
    assert response.status_code == 200
    assert response.get_json() == []


def test_cors_simple_request(client):
    response = client.get("/v1/healthz", headers={"Origin": "http://example.com"})
    assert response.headers["Access-Control-Allow-Origin"] == "http://example.com"
    assert response.headers["Access-Control-Expose-Headers"] == "Link"


def test_cors_rejects_other_scheme(client):
    response = client.get("/v1/healthz", headers={"Origin": "ftp://example.com"})
    assert "Access-Control-Allow-Origin" not in response.headers


def test_cors_preflight(client):
    response = client.options(
        "/v1/feeds",
        headers={
            "Origin": "https://example.com",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "Authorization",
        },
    )
    assert response.status_code == 200
    assert response.headers["Access-Control-Allow-Origin"] == "https://example.com"
    assert response.headers["Access-Control-Allow-Methods"] == "POST"
    assert response.headers["Access-Control-Allow-Headers"] == "Authorization"
    assert response.headers["Access-Control-Max-Age"] == "300"


def test_cors_preflight_disallowed_method(client):
    response = client.options(
        "/v1/feeds",
        headers={"Origin": "https://example.com", "Access-Control-Request-Method": "PATCH"},
    )
    assert "Access-Control-Allow-Origin" not in response.headers


def test_main_requires_port(tmp_path, monkeypatch):
    monkeypatch.delenv("PORT", raising=False)
    monkeypatch.setenv("DB_URL", str(tmp_path / "db.sqlite"))
    assert main(["--env-file", str(tmp_path / "missing.env")]) == 1


def test_main_requires_db_url(tmp_path, monkeypatch):
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.delenv("DB_URL", raising=False)
    assert main(["--env-file", str(tmp_path / "missing.env")]) == 1


def test_main_rejects_non_numeric_port(tmp_path, monkeypatch):
    monkeypatch.setenv("PORT", "http")
    monkeypatch.setenv("DB_URL", str(tmp_path / "db.sqlite"))
    assert main(["--env-file", str(tmp_path / "missing.env")]) == 1