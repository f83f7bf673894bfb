"""handlers/ -- Request handlers for rtest: connect/disconnect, me, users.

Each handler receives already-extracted request values (strings, raw body
bytes), talks to the SessionStore and the UserStore, and either returns a
domain value or raises a core.errors.ServiceError. Turning either into the
JSON envelope is api/'s job.

Layer rule: handlers/ imports from auth/ and core/ only.
api/ imports from handlers/, not the other way around.
"""
