# Middleware package init
"""
BuFood API Gateway — Middleware Package
========================================

What:  The stages of the request pipeline. Their order is fixed in
       `gateway.pipeline.build_middleware`:

    Request → [Context] → [Origin] → [CORS] → [Security headers] → [GZip]
            → [Body limit] → [Admission] → [Response cache] → Route handler

    Responses travel back through the same stages in reverse, which is how
    the request id, security headers and compression reach every response.
"""
