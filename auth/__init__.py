"""auth/ -- Caller identity for SitePosture: users, API keys, bearer tokens.

Layer rule: auth/ imports only stdlib, third-party libraries, core.config and
core.errors.
It does NOT import from api/, reports/, tenants/, or scanner/.
api/ imports from auth/, not the other way around.
"""
