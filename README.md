# rssagg

`rssagg` is a small HTTP service that aggregates RSS feeds. Users register,
add feeds, follow the feeds they care about and read the latest posts from
them. A background scraper thread fetches the feeds that have waited
longest (never-fetched feeds first), up to ten at a time in parallel, once
a minute, and stores every new item as a post. Everything is kept in a
SQLite database.

## Installing

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Running

The `rssagg` command reads its settings from the environment. A `.env`
file in the working directory is loaded first if it exists; another file
can be named with `--env-file`.

| Variable | Meaning                                                     |
|----------|-------------------------------------------------------------|
| `PORT`   | Port to listen on, on all interfaces (required)             |
| `DB_URL` | Path of the SQLite database file, created if missing (required) |

```
PORT=8080 DB_URL=rssagg.db rssagg
```

The command logs an error and exits with status 1 if either variable is
missing, if `PORT` is not a number, or if the database cannot be opened.
The tables are created on start-up when they do not exist yet.

## API

All routes live under `/v1` and answer with JSON. Errors come back as
`{"error": "<message>"}`. Cross-origin requests from any `http://` or
`https://` origin are allowed.

Routes marked *auth* need an API key, which is handed out when a user is
created:

```
Authorization: ApiKey placeholder
```

A missing or malformed `Authorization` header is answered with 403; a key
that belongs to no user with 400.

| Method | Path                               | Auth | Status | Does                                        |
|--------|------------------------------------|------|--------|---------------------------------------------|
| GET    | `/v1/healthz`                      |      | 200    | Readiness check, returns `{}`               |
| GET    | `/v1/err`                          |      | 400    | Always answers `"it's dead, jim"`           |
| POST   | `/v1/users`                        |      | 201    | Create a user from `{"name": ...}`          |
| GET    | `/v1/users`                        | yes  | 200    | The user the key belongs to                 |
| POST   | `/v1/feeds`                        | yes  | 201    | Add a feed from `{"name": ..., "url": ...}` |
| GET    | `/v1/feeds`                        |      | 201    | List every feed                             |
| GET    | `/v1/posts`                        | yes  | 200    | The ten newest posts from followed feeds    |
| POST   | `/v1/feed_follows`                 | yes  | 201    | Follow a feed from `{"feed_id": ...}`       |
| GET    | `/v1/feed_follows`                 | yes  | 201    | List the user's follows                     |
| DELETE | `/v1/feed_follows/<feed_follow_id>`| yes  | 200    | Stop following; returns `{}`                |

Feed URLs, post URLs and each (user, feed) follow are unique; creating a
duplicate is answered with 400. Deleting a follow that does not exist, or
belongs to another user, still answers 200.

A quick session with `curl`:

```
curl -X POST localhost:8080/v1/users -d '{"name": "alice"}'
curl localhost:8080/v1/users -H 'Authorization: ApiKey placeholder'
curl -X POST localhost:8080/v1/feeds \
     -H 'Authorization: ApiKey placeholder' \
     -d '{"name": "Example", "url": "https://example.com/index.xml"}'
```

Replace `placeholder` with the `api_key` returned when the user was created.

## Using it as a library

- `rssagg.rss.parse_feed` turns RSS bytes or text into an `RSSFeed` with
  `RSSItem` entries, and `rssagg.rss.url_to_feed` downloads and parses one.
- `rssagg.database.connect(path)` opens a SQLite store (`":memory:"` by
  default) and returns a `Queries` object with typed queries for users,
  feeds, follows and posts, and a `transaction()` context manager. Failures
  raise `DatabaseError`, `NotFoundError` or `DuplicateKeyError`.
- `rssagg.scraper.scrape_feed`, `scrape_once` and `start_scraping` collect
  posts; each takes an optional `fetch` callable in place of
  `url_to_feed`, and `start_scraping` stops when its `stop` event is set.
- `rssagg.models` holds the API records and their `to_dict()` forms.
- `rssagg.auth.get_api_key` reads the key from a header mapping, raising
  `AuthError`.
- `rssagg.config.read` and `Config.set_user` load and save a small JSON
  configuration file, `~/.gatorconfig.json` by default. The server does not
  use it.
- `rssagg.server.create_app(queries)` builds the Flask application.

## What it does not do

Storage is SQLite only: `DB_URL` is a file path, not a connection string
for a database server. There is no command-line client for the API and no
way to delete users or feeds.