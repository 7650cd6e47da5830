"""Linux session bus detection for headless execution.

When started from cron or a bare systemd unit there is often no
DBUS_SESSION_BUS_ADDRESS, so the session manager cannot be reached. This
module points the process at the user's session bus when it can be found.
"""

import os
import logging


def ensure_session_bus_environment():
    """Inject XDG_RUNTIME_DIR and DBUS_SESSION_BUS_ADDRESS if missing.

    Returns True if a session bus address is set afterwards.
    """
    uid = os.getuid()

    # 1. XDG_RUNTIME_DIR
    if not os.environ.get('XDG_RUNTIME_DIR'):
        xdg_path = f'/run/user/{uid}'
        if os.path.exists(xdg_path):
            os.environ['XDG_RUNTIME_DIR'] = xdg_path

    xdg = os.environ.get('XDG_RUNTIME_DIR', f'/run/user/{uid}')

    # 2. DBus session bus socket
    if not os.environ.get('DBUS_SESSION_BUS_ADDRESS'):
        dbus_path = os.path.join(xdg, 'bus')
        if os.path.exists(dbus_path):
            os.environ['DBUS_SESSION_BUS_ADDRESS'] = f'unix:path={dbus_path}'

    address = os.environ.get('DBUS_SESSION_BUS_ADDRESS')
    if address:
        logging.debug(f"Session bus: {address}")
    else:
        logging.warning("No DBus session bus found; is a desktop session running?")
    return bool(address)
