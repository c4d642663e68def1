"""
Membership Service package.

This package manages user accounts and their time-bounded paid tiers.
It provides:

- app.main: API surface for accounts, membership and health.
- app.membership: Entitlement model, calendar arithmetic and the manager
  that grants, renews and checks memberships.
- app.cache: Redis-backed cache of user views.
- app.persistence: PostgreSQL persistence for user records.
- app.users: Registration, login and profile mutation.
- app.security: Password hashing and token issuing.

Guidelines:
- The store is the only authority on membership; the cache is a shadow.
- Every mutation writes the store first and invalidates the cache after.
- Active status is always recomputed against the clock, never cached.
"""
