# server.py
# blobrelay server: WebSocket message relay with deferred media resolution.
# Use: python server.py   (settings come from RELAY_* environment variables / .env)
import logging

import uvicorn

from blobrelay.app import create_app
from blobrelay.config import Settings


def main():
    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )
    app = create_app(settings)
    logging.getLogger('blobrelay').info(
        "relay listening on %s:%d, public files at %s", settings.host, settings.port, settings.public_base_url)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == '__main__':
    main()
