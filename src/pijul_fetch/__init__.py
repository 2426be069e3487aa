"""pijul-fetch: resolve pijul repositories to cached, content-addressed trees."""

__version__ = "0.1.0"
