"""
Membership package.

Defines the user/entitlement model and the manager that evaluates and
mutates membership windows. The manager talks to the store, the view
cache and the clock only through their abstract interfaces so it can be
exercised with in-memory fakes.

Modules of interest:
- models: UserRole, User, UserView and request/response models.
- calendar: Calendar-month arithmetic with end-of-month clamping.
- clock: Injectable time source.
- manager: check_active / grant_or_renew / set_role_direct.
"""
