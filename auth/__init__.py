"""auth/ -- Authentication core for AuthGate.

Registration, credential checks, TOTP verification, adaptive rate limiting
and token issuance. AuthService (auth/service.py) is the entry point;
auth/factory.py wires it from Settings.

Layer rule: auth/ may import core/, cache/ and notify/.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
