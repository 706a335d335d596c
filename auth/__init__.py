"""auth/ -- Token/session lifecycle, credential flows and role guards for authgate.

Layer rule: auth/ imports stdlib, third-party libraries and core/ only.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
