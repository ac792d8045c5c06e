"""
BuFood API Gateway — Server Entrypoint
========================================

What:  Runs the gateway under uvicorn and owns process termination.
How:   `GatewayServer` extends uvicorn's Server so that SIGTERM/SIGINT first
       flip the lifecycle into draining (new requests get 503) and then let
       uvicorn stop listening and run the lifespan shutdown, which closes
       the cache and store connections. The process exits with the
       lifecycle's exit code: 0 on a clean close sequence, 1 otherwise.

A second signal during shutdown is ignored: uvicorn would otherwise force
an exit and skip the lifespan shutdown. Signals are not re-raised once the
server stops, so the process exit status is the lifecycle's code rather
than death by signal.

Usage:
    python -m gateway
    bufood-gateway
"""

import logging
import sys

import uvicorn

from gateway.config import Settings
from gateway.lifecycle import LifecycleManager
from gateway.main import create_app

logger = logging.getLogger(__name__)


class GatewayServer(uvicorn.Server):
    def __init__(self, config: uvicorn.Config, lifecycle: LifecycleManager):
        super().__init__(config)
        self.lifecycle = lifecycle

    def handle_exit(self, sig, frame) -> None:
        if not self.lifecycle.accepting:
            logger.info("Shutdown already in progress; ignoring signal %s", sig)
            return
        self.lifecycle.begin_shutdown(f"signal {sig}")
        self.should_exit = True


def main() -> None:
    settings = Settings()
    app = create_app(settings)
    lifecycle: LifecycleManager = app.state.lifecycle

    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_config=None,
        proxy_headers=False,
    )
    server = GatewayServer(config, lifecycle)
    server.run()

    code = lifecycle.exit_code if lifecycle.exit_code is not None else 0
    sys.exit(code)


if __name__ == "__main__":
    main()
