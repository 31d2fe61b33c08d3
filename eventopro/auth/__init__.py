"""
Authentication and session core for the EventoPro API.

Design goals:
- Pluggable sign-in (local password, Google/Facebook OAuth, dev bypass).
- Server-side sessions behind a signed, HttpOnly cookie.
- Role checks live in `eventopro.authz`; this package only establishes identity.
"""
