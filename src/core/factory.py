import sys
import logging
from .interfaces import SessionManager

def get_session_manager(bus: str = "SESSION") -> SessionManager:
    """
    Returns the SessionManager implementation for the current platform.
    """
    if sys.platform.startswith("linux"):
        try:
            from platforms.linux.session_manager import GnomeSessionManager
            return GnomeSessionManager(bus=bus)
        except ImportError as e:
            logging.error(f"Failed to import Linux session manager: {e}")
            raise

    else:
        raise NotImplementedError(f"Platform {sys.platform} is not supported.")
