import logging

import uvicorn

from subber_proxy.config import load_config


def main() -> None:
    config = load_config()
    uvicorn.run(
        "subber_proxy.server:app",
        host=config.host,
        port=config.port,
        log_level=logging.getLevelName(config.log_level).lower(),
    )


if __name__ == "__main__":
    main()
