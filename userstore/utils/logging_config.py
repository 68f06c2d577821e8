import logging
import logging.handlers
from pathlib import Path


def setup_logging(log_to_file: bool = False, log_file_path: str = "log.txt") -> None:
    """
    Configure logging to output to stdout and optionally to a file.

    Args:
        log_to_file: Whether to enable file logging alongside stdout
        log_file_path: Path to log file when file logging is enabled
    """
    # Same line layout for stdout and the rotating file
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Start from a clean root logger so repeated setup does not duplicate output
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    # External packages (asyncpg, tenacity) log at INFO and above
    root_logger.setLevel(logging.INFO)

    # Lookups, resolution paths and password checks are traced at DEBUG
    userstore_logger = logging.getLogger("userstore")
    userstore_logger.setLevel(logging.DEBUG)

    # asyncpg reports every pool connection reset at INFO
    logging.getLogger("asyncpg").setLevel(logging.WARNING)

    # Always add stdout handler
    stdout_handler = logging.StreamHandler()
    stdout_handler.setLevel(logging.DEBUG)
    stdout_handler.setFormatter(logging.Formatter(log_format))
    root_logger.addHandler(stdout_handler)

    # Add file handler if requested
    if log_to_file:
        try:
            # Log directory may not exist yet on a fresh container volume
            log_path = Path(log_file_path)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            file_handler = logging.handlers.RotatingFileHandler(
                log_file_path,
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=5,
            )
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(log_format))
            root_logger.addHandler(file_handler)

            logging.info(f"File logging enabled: {log_file_path}")

        except OSError as e:
            logging.exception(f"Failed to setup file logging to {log_file_path}: {e}")
            logging.info("Continuing with stdout logging only")
    else:
        logging.info("File logging disabled - using stdout only")
