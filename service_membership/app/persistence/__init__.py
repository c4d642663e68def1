"""
Persistence package for the Membership service.

- base: UserStore interface consumed by the manager and user service.
- postgres: asyncpg-backed implementation.
"""
