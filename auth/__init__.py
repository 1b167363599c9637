"""auth/ -- Authentication and authorization package for the Eat Fast API.

Layer rule: auth/ imports stdlib, third-party libraries, core/ and cache/.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
