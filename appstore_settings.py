"""
AppStore Settings
Manages appstore-settings.json: user settings and the persisted browser state
"""

import json
import logging
import os
from datetime import datetime
from pathlib import Path

from appstore_models import BrowserState

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 10
BROWSER_STATE_KEY = 'browser_state'


def default_data_dir():
    """Resolve the data directory from APPSTORE_DATA_DIR or the user home."""
    override = os.environ.get('APPSTORE_DATA_DIR')
    if override:
        return Path(override).expanduser()
    return Path.home() / '.local' / 'share' / 'appstore'


class AppStoreSettings:
    def __init__(self, data_dir, filename='appstore-settings.json'):
        self.data_dir = Path(data_dir)
        self.settings_file = self.data_dir / filename
        self.settings = self._load_settings()

    def _load_settings(self):
        if self.settings_file.exists():
            try:
                with open(self.settings_file, 'r', encoding='utf-8') as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    return data
            except (OSError, ValueError) as e:
                logger.warning("Settings decode error (%s): %s", self.settings_file, e)
        return {}

    def save_settings(self):
        """Save settings to disk"""
        self.settings['last_updated'] = datetime.now().isoformat()
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            with open(self.settings_file, 'w', encoding='utf-8') as f:
                json.dump(self.settings, f, indent=2, ensure_ascii=False)
            return True
        except OSError as e:
            logger.error("Error saving settings: %s", e)
            return False

    def get_setting(self, key, default=None):
        """Get a setting value"""
        return self.settings.get(key, default)

    def set_setting(self, key, value):
        """Set a setting value"""
        self.settings[key] = value
        return self.save_settings()

    def get_all_settings(self):
        return dict(self.settings)

    def get_github_token(self):
        """GitHub token from settings, falling back to GITHUB_TOKEN."""
        token = self.get_setting('github_token')
        if not token:
            token = os.environ.get('GITHUB_TOKEN')
        if not token or token == 'your_github_token':
            return None
        return token

    def get_request_timeout(self):
        try:
            timeout = float(self.get_setting('request_timeout', DEFAULT_REQUEST_TIMEOUT))
        except (TypeError, ValueError):
            return DEFAULT_REQUEST_TIMEOUT
        return timeout if timeout > 0 else DEFAULT_REQUEST_TIMEOUT

    def load_browser_state(self, valid_sort_modes=None):
        """Load the persisted browser state, normalized.

        Args:
            valid_sort_modes: Optional iterable - Accepted sort mode ids

        Returns:
            BrowserState - Defaults when nothing was saved yet
        """
        return BrowserState.from_dict(self.get_setting(BROWSER_STATE_KEY), valid_sort_modes)

    def save_browser_state(self, state):
        return self.set_setting(BROWSER_STATE_KEY, state.to_dict())
