import logging
import sys


class Log:
    """Centralized logging for the tracker service."""

    _logger: logging.Logger = logging.getLogger("idp_tracker")

    @classmethod
    def configure(cls, log_level: str) -> None:
        cls._logger.setLevel(log_level.upper())
        if not cls._logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(
                logging.Formatter("%(asctime)s [%(levelname)s] %(threadName)s %(message)s")
            )
            cls._logger.addHandler(handler)

    @classmethod
    def info(cls, message: str, **kwargs: object) -> None:
        cls._logger.info(message, extra=kwargs)

    @classmethod
    def warning(cls, message: str, **kwargs: object) -> None:
        cls._logger.warning(message, extra=kwargs)

    @classmethod
    def error(cls, message: str, **kwargs: object) -> None:
        cls._logger.error(message, extra=kwargs)

    @classmethod
    def exception(cls, message: str, **kwargs: object) -> None:
        """Log an error message with the active exception's traceback."""
        cls._logger.exception(message, extra=kwargs)

    @classmethod
    def debug(cls, message: str, **kwargs: object) -> None:
        cls._logger.debug(message, extra=kwargs)
