"""auth/ -- Authentication and route authorization for the member site.

OTP login (otp.py, rate_limit.py, dispatch.py), session tokens (tokens.py),
session cookies (cookies.py), the route gate (gate.py), and persistence
(store.py).

Layer rule: auth/ imports stdlib, third-party libraries, and core/ only.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
