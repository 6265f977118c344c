"""auth/ -- Credential store, password hashing, token codec and session lifecycle.

Layer rule: auth/ imports only stdlib + third-party libraries (fastapi only in
dependencies.py). It does NOT import from api/ or core/; settings values are
passed into constructors. api/ imports from auth/, not the other way around.
"""
