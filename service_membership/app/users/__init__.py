"""
User account lifecycle: registration, login/logout, profile mutation and
administrative user management. Membership changes live in
app.membership.manager.
"""
