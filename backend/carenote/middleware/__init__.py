"""
CareNote Backend — Middleware Package
=======================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain (order matters):
    Request → [Rate Limit] → [Request ID] → [Logging] → [CORS] → Route Handler

    1. Rate Limit first: reject abusive clients before any processing
    2. Request ID: correlation id for logs, error bodies and Corti calls
    3. Logging: one access line per request, tagged with request id and user id
    4. CORS: FastAPI's CORSMiddleware (handles preflight)
"""
