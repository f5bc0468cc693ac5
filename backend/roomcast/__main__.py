"""Run the roomcast server: ``python -m roomcast``."""
import uvicorn

from roomcast.config import get_config


def main() -> None:
    config = get_config()
    uvicorn.run(
        "roomcast.main:app",
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level,
    )


if __name__ == "__main__":
    main()
