"""auth/ -- Credentials, sessions and the user repository for rtest.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/ or handlers/.
handlers/ and api/ import from auth/, not the other way around.
"""
