"""Provider clients, caching, rate limiting and the fallback waterfall."""
