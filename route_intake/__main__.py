import logging

import uvicorn

from route_intake.config import settings


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run("route_intake.main:app", host=settings.app_host, port=settings.app_port)


if __name__ == "__main__":
    main()
