"""Authentication and authorization.

Users log in with email/password and receive JWT access/refresh tokens.
The same access token authenticates REST calls (Authorization: Bearer)
and the realtime socket (first "auth" frame).
"""
