"""identity/ -- Identity resolution and session issuance for Signet.

Layer rule: identity/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/. api/ imports from identity/, not the other way
around. The one exception is identity/dependencies.py, which is part of the
FastAPI dependency injection system and may import fastapi.
"""
