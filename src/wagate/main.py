"""Gateway entry point."""

import uvicorn

from wagate.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run("wagate.api.app:app", host=settings.host, port=settings.port, log_level="info")


if __name__ == "__main__":
    main()
