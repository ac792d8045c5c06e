# Routes package init
"""
BuFood API Gateway — Gateway Routes
=====================================

Route Inventory:
    - health.py:  GET /health   (service status, timestamp, uptime)
                  GET /         (service banner)

    /api-docs is FastAPI's Swagger UI. Business routes (/api/products,
    /api/orders, ...) are supplied by the handler layer through
    `create_app(routers=...)`.
"""
