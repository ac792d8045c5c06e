"""
BuFood API Gateway — Application Package Initializer
=====================================================

What: Marks the `gateway` directory as a Python package.
Who:  Imported by uvicorn (`gateway.main:app`), the server entrypoint and pytest.

Architecture Note:
    The gateway is the request admission and lifecycle layer that sits in
    front of the platform's route handlers:

    ┌─────────────────────────────────────┐
    │     Middleware Pipeline (ordered)   │  ← origin, headers, gzip, admission, cache
    ├─────────────────────────────────────┤
    │     Routes (external collaborators) │  ← products, orders, carts, ...
    ├─────────────────────────────────────┤
    │        Lifecycle Manager            │  ← store + cache connections, shutdown
    └─────────────────────────────────────┘

    Route handlers only borrow the connections the lifecycle manager owns.
"""

__version__ = "1.0.0"
