# Middleware package init
"""
GroupUp Backend - Middleware Package
====================================

Middleware Chain (outermost first):
    Request → [Rate Limit] → [Request ID] → [Logging] → [CORS] → Route Handler

    1. Rate Limit: write requests over the per-IP budget never reach a handler
    2. Request ID: correlation ID for logs, error bodies and the response header
    3. Logging:    one line per request with status and duration
    4. CORS:       FastAPI's CORSMiddleware (preflight included)
"""
