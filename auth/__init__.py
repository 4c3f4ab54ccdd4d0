"""auth/ -- Authentication and authorization package for Batchmates.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/. api/ and main.py import from auth/, not the
other way around.
"""
