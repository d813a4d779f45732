"""RSS feed aggregator: a JSON HTTP API over SQLite with a background scraper."""

__version__ = "0.1.0"