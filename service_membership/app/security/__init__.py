"""
Security helpers: bcrypt password hashing and JWT issuing/parsing.
"""
