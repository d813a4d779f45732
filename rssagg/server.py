"""HTTP API over the feed database, with CORS and API-key authentication."""

from __future__ import annotations

import argparse
import functools
import json
import logging
import os
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from dotenv import load_dotenv
from flask import Flask, Response, request

from rssagg import models
from rssagg.auth import AuthError, get_api_key
from rssagg.database import DatabaseError, Queries, connect
from rssagg.scraper import start_scraping

__all__ = ["respond_with_json", "respond_with_error", "create_app", "main"]

log = logging.getLogger(__name__)

POSTS_LIMIT = 10
SCRAPE_CONCURRENCY = 10
SCRAPE_INTERVAL = timedelta(minutes=1)

_ALLOWED_METHODS = ("GET", "POST", "PUT", "DELETE", "OPTIONS")
_ALLOWED_ORIGIN_PREFIXES = ("https://", "http://")
_EXPOSED_HEADERS = "Link"
_MAX_AGE = "300"

_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def _jsonable(payload: Any) -> Any:
    if hasattr(payload, "to_dict"):
        return payload.to_dict()
    if isinstance(payload, (list, tuple)):
        return [_jsonable(item) for item in payload]
    if isinstance(payload, dict):
        return {key: _jsonable(value) for key, value in payload.items()}
    return payload


def _encode(payload: Any) -> str:
    text = json.dumps(
        _jsonable(payload), ensure_ascii=False, allow_nan=False, separators=(",", ":")
    )
    return "".join(_ESCAPES.get(char, char) for char in text)


def respond_with_json(code: int, payload: Any) -> Response:
    """Serialise ``payload`` as a JSON response with status ``code``.

    A payload that cannot be serialised yields an empty 500 response.
    """
    try:
        body = _encode(payload)
    except (TypeError, ValueError):
        log.error("Failed to marshal JSON response: %r", payload)
        return Response(status=500)
    return Response(body, status=code, content_type="application/json")


def respond_with_error(code: int, msg: str) -> Response:
    """Respond with ``{"error": msg}``; server errors are also logged."""
    if code > 499:
        log.error("Responding with 5XX error: %s", msg)
    return respond_with_json(code, {"error": msg})


class _BadRequestBody(ValueError):
    pass


def _decode_body() -> dict:
    """Decode the first JSON value of the request body into an object."""
    text = request.get_data(as_text=True).lstrip()
    if not text:
        raise _BadRequestBody("EOF")
    try:
        value, _ = json.JSONDecoder().raw_decode(text)
    except json.JSONDecodeError as exc:
        raise _BadRequestBody(str(exc)) from exc
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise _BadRequestBody(
            f"cannot unmarshal {type(value).__name__} into parameters object"
        )
    return value


def _string_param(params: dict, key: str) -> str:
    value = params.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise _BadRequestBody(f"field {key!r} must be a string")
    return value


def _uuid_param(params: dict, key: str) -> uuid.UUID:
    value = params.get(key)
    if value is None:
        return uuid.UUID(int=0)
    if not isinstance(value, str):
        raise _BadRequestBody(f"field {key!r} must be a string")
    try:
        return uuid.UUID(value)
    except ValueError as exc:
        raise _BadRequestBody(f"invalid UUID {value!r}") from exc


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _origin_allowed(origin: str) -> bool:
    return origin.startswith(_ALLOWED_ORIGIN_PREFIXES)


def _is_preflight() -> bool:
    return request.method == "OPTIONS" and bool(
        request.headers.get("Access-Control-Request-Method")
    )


def create_app(queries: Queries) -> Flask:
    """Build the application serving the ``/v1`` API on ``queries``."""
    app = Flask(__name__)

    @app.before_request
    def _preflight():
        if not _is_preflight():
            return None
        response = Response(status=200)
        response.headers["Vary"] = (
            "Origin, Access-Control-Request-Method, Access-Control-Request-Headers"
        )
        origin = request.headers.get("Origin", "")
        method = request.headers.get("Access-Control-Request-Method", "").upper()
        if origin and _origin_allowed(origin) and method in _ALLOWED_METHODS:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Allow-Methods"] = method
            requested = request.headers.get("Access-Control-Request-Headers")
            if requested:
                response.headers["Access-Control-Allow-Headers"] = requested
            response.headers["Access-Control-Max-Age"] = _MAX_AGE
        return response

    @app.after_request
    def _cors(response: Response) -> Response:
        if _is_preflight():
            return response
        response.headers.add("Vary", "Origin")
        origin = request.headers.get("Origin", "")
        if origin and _origin_allowed(origin):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Expose-Headers"] = _EXPOSED_HEADERS
        return response

    def authed(view: Callable) -> Callable:
        @functools.wraps(view)
        def wrapper(*args, **kwargs):
            try:
                api_key = get_api_key(request.headers)
            except AuthError as exc:
                return respond_with_error(403, f"Auth error: {exc}")
            try:
                user = queries.get_user_by_api_key(api_key)
            except DatabaseError as exc:
                return respond_with_error(400, f"couldn't get user: {exc}")
            return view(user, *args, **kwargs)

        return wrapper

    @app.get("/v1/healthz")
    def readiness():
        return respond_with_json(200, {})

    @app.get("/v1/err")
    def error():
        return respond_with_json(400, "it's dead, jim")

    @app.post("/v1/users")
    def create_user():
        try:
            params = _decode_body()
            name = _string_param(params, "name")
        except _BadRequestBody as exc:
            return respond_with_error(400, f"Error parsing JSON {exc}")
        now = _now()
        try:
            user = queries.create_user(
                id=uuid.uuid4(), created_at=now, updated_at=now, name=name
            )
        except DatabaseError as exc:
            return respond_with_error(400, f"yikes, user not able to be created~: {exc}")
        return respond_with_json(201, models.user_from_db(user))

    @app.get("/v1/users")
    @authed
    def get_user(user):
        return respond_with_json(200, models.user_from_db(user))

    @app.post("/v1/feeds")
    @authed
    def create_feed(user):
        try:
            params = _decode_body()
            name = _string_param(params, "name")
            url = _string_param(params, "url")
        except _BadRequestBody as exc:
            return respond_with_error(400, f"Error parsing JSON {exc}")
        now = _now()
        try:
            feed = queries.create_feed(
                id=uuid.uuid4(),
                created_at=now,
                updated_at=now,
                name=name,
                url=url,
                user_id=user.id,
            )
        except DatabaseError as exc:
            return respond_with_error(400, f"yikes, feed not able to be created~: {exc}")
        return respond_with_json(201, models.feed_from_db(feed))

    @app.get("/v1/feeds")
    def get_feeds():
        try:
            feeds = queries.get_feeds()
        except DatabaseError as exc:
            return respond_with_error(
                400, f"oopsie, couldnt't get your feeds sadge: {exc}"
            )
        return respond_with_json(201, models.feeds_from_db(feeds))

    @app.get("/v1/posts")
    @authed
    def get_posts_for_user(user):
        try:
            posts = queries.get_posts_for_user(user.id, POSTS_LIMIT)
        except DatabaseError as exc:
            return respond_with_error(400, f"Couldn't get posts: {exc}")
        return respond_with_json(200, models.posts_from_db(posts))

    @app.post("/v1/feed_follows")
    @authed
    def create_feed_follow(user):
        try:
            params = _decode_body()
            feed_id = _uuid_param(params, "feed_id")
        except _BadRequestBody as exc:
            return respond_with_error(400, f"Error parsing JSON {exc}")
        now = _now()
        try:
            follow = queries.create_feed_follow(
                id=uuid.uuid4(),
                created_at=now,
                updated_at=now,
                user_id=user.id,
                feed_id=feed_id,
            )
        except DatabaseError as exc:
            return respond_with_error(
                400, f"yikes, feed follow not able to be created~: {exc}"
            )
        return respond_with_json(201, models.feed_follow_from_db(follow))

    @app.get("/v1/feed_follows")
    @authed
    def get_feed_follows(user):
        try:
            follows = queries.get_feed_follows(user.id)
        except DatabaseError as exc:
            return respond_with_error(
                400, f"yikes, feed follow not able to be created~: {exc}"
            )
        return respond_with_json(201, models.feed_follows_from_db(follows))

    @app.delete("/v1/feed_follows/<feed_follow_id>")
    @authed
    def delete_feed_follow(user, feed_follow_id):
        try:
            follow_id = uuid.UUID(feed_follow_id)
        except ValueError as exc:
            return respond_with_error(400, f"Couldn't parse feed follow id: {exc}")
        try:
            queries.delete_feed_follow(follow_id, user.id)
        except DatabaseError as exc:
            return respond_with_error(
                400, f"wow wow wow, wow, couldn't delete feed follow: {exc}"
            )
        return respond_with_json(200, {})

    return app


def main(argv=None) -> int:
    """Load settings from the environment, start the scraper and serve the API."""
    parser = argparse.ArgumentParser(prog="rssagg", description="RSS aggregator API server")
    parser.add_argument("--env-file", default=".env", help="file of environment settings")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")
    load_dotenv(args.env_file)

    port = os.environ.get("PORT", "")
    if not port:
        log.critical("PORT not found in env")
        return 1
    db_url = os.environ.get("DB_URL", "")
    if not db_url:
        log.critical("DB_URL not found in env")
        return 1
    try:
        port_number = int(port)
    except ValueError:
        log.critical("invalid PORT %r", port)
        return 1

    try:
        queries = connect(db_url)
    except DatabaseError:
        log.critical("can't connect to database")
        return 1

    stop = threading.Event()
    scraper = threading.Thread(
        target=start_scraping,
        args=(queries, SCRAPE_CONCURRENCY, SCRAPE_INTERVAL, stop),
        daemon=True,
    )
    scraper.start()

    app = create_app(queries)
    log.info("Server starting on port %s", port)
    try:
        app.run(host="0.0.0.0", port=port_number, threaded=True)
    except OSError as exc:
        log.critical("%s", exc)
        return 1
    finally:
        stop.set()
    return 0