import logging
import os
from datetime import datetime
from pathlib import Path

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def get_log_file_path():
    """Get the current log file path based on today's date."""
    from .config import get_config, get_app_data_dir

    config = get_config()
    log_dir_name = config.get("logging", "log_directory") or "logs"
    log_format = config.get("logging", "log_file_format") or "inhibit_indicator_{date}.log"

    # Format the filename with today's date
    date_str = datetime.now().strftime("%Y-%m-%d")
    filename = log_format.replace("{date}", date_str)

    log_dir = os.path.join(get_app_data_dir(), log_dir_name)
    Path(log_dir).mkdir(parents=True, exist_ok=True)

    return os.path.join(log_dir, filename)


def get_log_level(name, default=logging.INFO):
    """Translate a level name such as "DEBUG" into a logging constant."""
    level = logging.getLevelName(str(name).upper()) if name else default
    return level if isinstance(level, int) else default


def setup_file_logging():
    """Enable file logging by adding a FileHandler to the root logger."""
    try:
        log_file = get_log_file_path()

        # Check if file handler already exists
        root_logger = logging.getLogger()
        for handler in root_logger.handlers:
            if isinstance(handler, logging.FileHandler):
                if handler.baseFilename == os.path.abspath(log_file):
                    logging.info("File logging already enabled")
                    return True

        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(root_logger.level or logging.INFO)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))

        root_logger.addHandler(file_handler)
        logging.info(f"File logging enabled: {log_file}")
        return True
    except Exception as e:
        logging.error(f"Failed to setup file logging: {e}")
        return False

