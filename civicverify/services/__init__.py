"""Service layer -- transport, retry, rate limiting, data sources, and scoring."""
