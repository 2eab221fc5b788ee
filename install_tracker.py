"""
Install Tracker
Manages the appstore-installs.json file mapping installed plugins and
patches to the upstream repositories they were matched with
"""

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path

from appstore_models import InstallRecord, PatchInstallRecord

logger = logging.getLogger(__name__)

PLUGINS = 'plugins'
PATCHES = 'patches'
NAMESPACES = (PLUGINS, PATCHES)

_RECORD_TYPES = {
    PLUGINS: InstallRecord,
    PATCHES: PatchInstallRecord,
}


class InstallTracker:
    def __init__(self, data_dir, filename='appstore-installs.json'):
        self.data_dir = Path(data_dir)
        self.tracker_file = self.data_dir / filename
        self.installs = self._load_installs()

    def _load_installs(self):
        """Load installs from the tracker file"""
        if not self.tracker_file.exists():
            return self._create_empty_structure()
        try:
            with open(self.tracker_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Install tracker decode error (%s): %s", self.tracker_file, e)
            return self._create_empty_structure()
        return self._normalize(data)

    def _create_empty_structure(self):
        """Create empty install structure"""
        return {
            'version': '1.0',
            'last_updated': datetime.now().isoformat(),
            PLUGINS: {},
            PATCHES: {}
        }

    def _normalize(self, data):
        if not isinstance(data, dict):
            return self._create_empty_structure()
        if PLUGINS not in data:
            # Older files held a bare dirname -> record map
            plugins = {k: v for k, v in data.items() if isinstance(v, dict)}
            data = self._create_empty_structure()
            data[PLUGINS] = plugins
            return data
        for namespace in NAMESPACES:
            if not isinstance(data.get(namespace), dict):
                logger.warning("Install tracker namespace '%s' is malformed, starting empty", namespace)
                data[namespace] = {}
        return data

    def reload(self):
        self.installs = self._load_installs()

    def _copy_installs(self):
        """Working copy of the document; namespaces are copied one level deep."""
        installs = dict(self.installs)
        for namespace in NAMESPACES:
            installs[namespace] = dict(self.installs[namespace])
        return installs

    def save_installs(self, installs=None):
        """Rewrite the whole tracker file atomically.

        Args:
            installs: Optional dict - Document to write, becomes the in-memory
                state only once it is on disk (defaults to the current one)

        Returns:
            bool - True on success
        """
        installs = self.installs if installs is None else installs
        installs['last_updated'] = datetime.now().isoformat()
        tmp_path = None
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix='.appstore-installs', dir=self.data_dir)
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(installs, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.tracker_file)
            self.installs = installs
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error("Error saving installs: %s", e)
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            return False

    def upsert(self, namespace, key, record):
        """Insert or replace a record.

        Args:
            namespace: str - 'plugins' or 'patches'
            key: str - Plugin directory name or patch filename
            record: dict/InstallRecord/PatchInstallRecord - Record to store

        Returns:
            bool - True if stored
        """
        if namespace not in NAMESPACES or not key:
            return False
        if hasattr(record, 'to_dict'):
            record = record.to_dict()
        installs = self._copy_installs()
        installs[namespace][key] = dict(record)
        return self.save_installs(installs)

    def get(self, namespace, key):
        """Get a typed record, or None"""
        if namespace not in NAMESPACES or not key:
            return None
        data = self.installs[namespace].get(key)
        if not isinstance(data, dict):
            return None
        return _RECORD_TYPES[namespace].from_dict(key, data)

    def remove(self, namespace, key):
        """Remove a record from the tracker"""
        if namespace not in NAMESPACES or not key:
            return False

        if key in self.installs[namespace]:
            installs = self._copy_installs()
            del installs[namespace][key]
            return self.save_installs(installs)

        return False

    def list_all(self, namespace):
        """Get every record of a namespace keyed by dirname/filename"""
        if namespace not in NAMESPACES:
            return {}
        record_type = _RECORD_TYPES[namespace]
        return {
            key: record_type.from_dict(key, data)
            for key, data in self.installs[namespace].items()
            if isinstance(data, dict)
        }

    def update_fields(self, namespace, key, fields):
        """Merge fields into a record, creating it if missing.

        None values are skipped so partial updates never erase data.
        """
        if namespace not in NAMESPACES or not key or not isinstance(fields, dict):
            return False

        current = self.installs[namespace].get(key)
        current = dict(current) if isinstance(current, dict) else {}
        for name, value in fields.items():
            if value is not None:
                current[name] = value
        return self.upsert(namespace, key, _RECORD_TYPES[namespace].from_dict(key, current))

    def get_count(self):
        """Get count of tracked records"""
        return {
            PLUGINS: len(self.installs.get(PLUGINS, {})),
            PATCHES: len(self.installs.get(PATCHES, {}))
        }

    def clear(self, namespace=None):
        installs = self._copy_installs()
        if namespace is None:
            installs[PLUGINS] = {}
            installs[PATCHES] = {}
        elif namespace in NAMESPACES:
            installs[namespace] = {}
        else:
            return False
        return self.save_installs(installs)
