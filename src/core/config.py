import copy
import json
import os
import logging

APP_NAME = "power-inhibit-indicator"

def get_app_data_dir():
    """Return the directory for persistent application data."""
    path = os.environ.get("POWER_INHIBIT_INDICATOR_HOME")
    if not path:
        config_home = os.environ.get("XDG_CONFIG_HOME") or os.path.join(os.path.expanduser("~"), ".config")
        path = os.path.join(config_home, APP_NAME)

    os.makedirs(path, exist_ok=True)
    return path

def get_settings_file():
    return os.path.join(get_app_data_dir(), "settings.json")

DEFAULT_SETTINGS = {
    "session": {
        "app_id": APP_NAME,           # Identifier our own inhibitor is registered under
        "inhibit_flags": 8,           # GNOME flags: 4=Suspend, 8=Idle
        "inhibit_reason": "Applet preventing power management",
        "bus": "SESSION"
    },
    "startup": {
        "inhibit_on_start": False
    },
    "logging": {
        "level": "INFO",
        "file_logging_enabled": False,
        "log_directory": "logs",
        "log_file_format": "inhibit_indicator_{date}.log"
    }
}

class ConfigManager:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(ConfigManager, cls).__new__(cls)
            cls._instance.settings = copy.deepcopy(DEFAULT_SETTINGS)
            cls._instance.load()
        return cls._instance

    def load(self):
        """Load settings from JSON file."""
        settings_file = get_settings_file()
        if os.path.exists(settings_file):
            try:
                with open(settings_file, 'r') as f:
                    data = json.load(f)
                    # Recursive update to ensure new keys are present
                    self._update_nested(self.settings, data)
                logging.info(f"Loaded settings from {settings_file}")
            except Exception as e:
                logging.error(f"Failed to load settings: {e}")
        else:
            self.save()

    def save(self):
        """Save current settings to JSON file."""
        settings_file = get_settings_file()
        try:
            with open(settings_file, 'w') as f:
                json.dump(self.settings, f, indent=4)
            logging.info(f"Saved settings to {settings_file}")
        except Exception as e:
            logging.error(f"Failed to save settings: {e}")

    def get(self, section, key=None):
        """Get a setting value."""
        section_data = self.settings.get(section)
        if key is None:
            return section_data
        if not isinstance(section_data, dict):
            return None
        return section_data.get(key)

    def _update_nested(self, d, u):
        for k, v in u.items():
            if isinstance(v, dict) and isinstance(d.get(k), dict):
                d[k] = self._update_nested(d[k], v)
            else:
                d[k] = v
        return d

# Global instance getter
def get_config():
    return ConfigManager()
