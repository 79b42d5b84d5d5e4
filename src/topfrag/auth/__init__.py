"""
TopFrag authentication.

- passwords: bcrypt hashing
- jwt: access tokens (python-jose, HS256)
- middleware: FastAPI dependencies resolving the current user
- steam: Steam OpenID 2.0 login
- api_key: shared key for the parser service surface
- discord_signature: ed25519 verification of Discord interactions
"""
