"""Command-line entrypoint for running the edge cache proxy."""

from __future__ import annotations

import uvicorn

from ..common.settings import EdgeProxySettings
from .app import create_app


def main() -> None:
    settings = EdgeProxySettings()
    app = create_app(settings)
    uvicorn.run(
        app,
        host=settings.bind_host,
        port=settings.bind_port,
        log_config=None,
        proxy_headers=True,
        server_header=False,
    )


if __name__ == "__main__":
    main()
