"""
Authentication and authorization for the API.

Design goals:
- Provider-agnostic OAuth2 (GitHub, Google, generic OIDC) behind one adapter interface.
- Server-side sessions addressed by an opaque cookie token, rotated at every privilege boundary.
- Ownership checks that never reveal whether another user's resource exists.
"""
