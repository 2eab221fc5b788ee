"""
Install Scanner
Detects installed plugins (*.koplugin folders) and patches (NN-name.lua files)
"""

import logging
import os
import re
from pathlib import Path

logger = logging.getLogger(__name__)

PLUGIN_SUFFIX = '.koplugin'
META_FILENAME = '_meta.lua'
PATCH_FILENAME_RE = re.compile(r'^\d+-.+\.lua$')


def is_patch_filename(filename):
    """Check whether a filename follows the numbered patch convention (e.g. '2-foo.lua')"""
    if not filename:
        return False
    return PATCH_FILENAME_RE.match(filename) is not None


def extract_meta_field(source, field):
    """Read a string field out of a _meta.lua manifest without executing it.

    Args:
        source: str/bytes - Manifest content
        field: str - Field name such as 'version' or 'name'

    Returns:
        str - Field value or None if absent
    """
    if isinstance(source, bytes):
        source = source.decode('utf-8', errors='replace')
    if not source or not field:
        return None
    pattern = r'(?<![\w.])' + re.escape(field) + r'''\s*=\s*["']([^"']+)["']'''
    match = re.search(pattern, source)
    return match.group(1) if match else None


def get_latest_modification_timestamp(path):
    """Newest mtime of a file or, recursively, of a directory tree.

    Args:
        path: str/Path - File or directory

    Returns:
        int - Unix timestamp, 0 if path does not exist
    """
    try:
        latest = os.stat(path).st_mtime
    except OSError:
        return 0
    if os.path.isdir(path):
        for root, dirs, files in os.walk(path):
            for name in dirs + files:
                try:
                    mtime = os.stat(os.path.join(root, name)).st_mtime
                except OSError:
                    continue
                if mtime > latest:
                    latest = mtime
    return int(latest)


def plugin_display_name(meta, dirname):
    if meta and meta.get('name'):
        return meta['name']
    if dirname:
        return dirname[:-len(PLUGIN_SUFFIX)] if dirname.endswith(PLUGIN_SUFFIX) else dirname
    return 'plugin'


class InstallScanner:
    def __init__(self, plugins_root, patches_root):
        """Initialize scanner.

        Args:
            plugins_root: str/Path - Directory holding *.koplugin folders
            patches_root: str/Path - Directory holding numbered patch files
        """
        self.plugins_root = Path(plugins_root)
        self.patches_root = Path(patches_root)

    def get_plugin_meta_path(self, dirname):
        if not dirname:
            return None
        return self.plugins_root / dirname / META_FILENAME

    def load_plugin_meta(self, dirname):
        """Parse name/fullname/version/description out of a plugin manifest.

        Returns:
            dict - Parsed fields or None if the manifest is missing/unreadable
        """
        meta_path = self.get_plugin_meta_path(dirname)
        if meta_path is None or not meta_path.is_file():
            return None
        try:
            source = meta_path.read_text(encoding='utf-8', errors='replace')
        except OSError as e:
            logger.warning("Cannot read plugin manifest %s: %s", meta_path, e)
            return None
        return {
            field: extract_meta_field(source, field)
            for field in ('name', 'fullname', 'version', 'description')
        }

    def list_installed_plugins(self):
        """List every installed plugin folder.

        Returns:
            list - Plugin dicts sorted by display name with:
            - dirname: str - Folder name ('foo.koplugin')
            - name: str - Display name from the manifest
            - version: str - Manifest version or None
            - path: Path - Folder path
            - meta_path_hint: str - Relative manifest path
            - latest_mtime: int - Newest mtime of the folder tree
        """
        plugins = []
        if not self.plugins_root.is_dir():
            return plugins

        for entry in self.plugins_root.iterdir():
            if not entry.is_dir() or not entry.name.endswith(PLUGIN_SUFFIX):
                continue
            meta = self.load_plugin_meta(entry.name)
            plugins.append({
                'dirname': entry.name,
                'meta': meta,
                'name': plugin_display_name(meta, entry.name),
                'version': meta.get('version') if meta else None,
                'path': entry,
                'meta_path_hint': f"{entry.name}/{META_FILENAME}",
                'latest_mtime': get_latest_modification_timestamp(entry),
            })

        plugins.sort(key=lambda p: (p['name'] or p['dirname']).lower())
        return plugins

    def find_installed_plugin(self, dirname):
        if not dirname:
            return None
        for plugin in self.list_installed_plugins():
            if plugin['dirname'] == dirname:
                return plugin
        return None

    def list_installed_patches(self):
        """List every installed patch file sorted by filename."""
        patches = []
        if not self.patches_root.is_dir():
            return patches

        for entry in self.patches_root.iterdir():
            if not entry.is_file() or not entry.name.endswith('.lua'):
                continue
            try:
                stat = entry.stat()
            except OSError:
                continue
            patches.append({
                'filename': entry.name,
                'path': entry,
                'size': stat.st_size,
                'latest_mtime': int(stat.st_mtime),
            })

        patches.sort(key=lambda p: p['filename'])
        return patches

    def find_installed_patch(self, filename):
        if not filename:
            return None
        path = self.patches_root / filename
        if not path.is_file():
            return None
        stat = path.stat()
        return {
            'filename': filename,
            'path': path,
            'size': stat.st_size,
            'latest_mtime': int(stat.st_mtime),
        }
