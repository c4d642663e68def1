"""
Cache package for the Membership service.

Provides the user-view cache interface and a Redis-backed
implementation. The cache is best-effort: failures are logged and
reported as misses so that callers fall back to the store.
"""
