"""Jenkins API Client.

Async client for the Jenkins remote access API with CSRF crumb handling,
a bounded retry on stale crumbs, and structured request logging.
"""

__version__ = "0.1.0"
