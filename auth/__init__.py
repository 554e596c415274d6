"""auth/ -- Authentication and authorization package for PersonaHub.

Layer rule: auth/ imports stdlib, third-party libraries and core/ only.
It does NOT import from api/ or personas/.
api/ and personas/ import from auth/, not the other way around.
"""
