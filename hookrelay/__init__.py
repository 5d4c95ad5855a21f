"""
Webhook Dispatch Service

Accepts "deliver this HTTP request later" jobs grouped into named queues and
delivers them with per-queue concurrency, deduplication, delay, attempt
timeouts, exponential-backoff retries and failure callbacks.
"""

__version__ = "1.0.0"
