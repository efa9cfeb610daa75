import logging

from subber_proxy.config import ProxyConfig

LOGGER_NAME = "uvicorn.error"


def configure_logging(config: ProxyConfig) -> logging.Logger:
    """
    Apply the configured diagnostic verbosity to the proxy logger.

    Under uvicorn the logger already has handlers; when the app is embedded
    elsewhere (tests, another ASGI server) a plain stream handler is added so
    the request/response dumps are not lost.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(config.log_level)

    has_handlers = any(
        logging.getLogger(name).handlers for name in (LOGGER_NAME, "uvicorn", "")
    )
    if not has_handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
        logger.addHandler(handler)
    return logger
