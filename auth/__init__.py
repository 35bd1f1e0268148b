"""auth/ -- Identity, profile and role package for Quillpress.

Layer rule: auth/ imports stdlib, third-party libraries, core.config and
(for page-state invalidation only) cache/. It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
