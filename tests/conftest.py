"""Pytest configuration and fixtures."""

import os
import sys
from pathlib import Path

import pytest

# Modules live at the repository root
root_path = Path(__file__).parent.parent
sys.path.insert(0, str(root_path))

from appstore_errors import NotFoundError
from appstore_models import CatalogEntry, KIND_PLUGIN
from catalog_cache import CatalogCache
from install_scanner import InstallScanner
from install_tracker import InstallTracker


# ---------------------------------------------------------------------------
# Fake remote
# ---------------------------------------------------------------------------

class FakeClient:
    """In-memory stand-in for GitHubClient.

    Values in the lookup tables may be exceptions, which are raised instead
    of returned. Missing raw files raise NotFoundError like a 404.
    """

    def __init__(self):
        self.metadata = {}
        self.raw_files = {}
        self.trees = {}
        self.search_results = {}
        self.downloads = {}
        self.readmes = {}
        self.calls = []

    @staticmethod
    def _resolve(value):
        if isinstance(value, Exception):
            raise value
        return value

    def search_repositories(self, query, page=1, per_page=30, sort=None, order=None):
        self.calls.append(('search', query, page))
        pages = self._resolve(self.search_results.get(query, []))
        items = pages[page - 1] if page <= len(pages) else []
        return {'items': self._resolve(items)}

    def fetch_repo_metadata(self, owner, repo):
        self.calls.append(('metadata', owner, repo))
        if (owner, repo) not in self.metadata:
            raise NotFoundError(f"HTTP 404: {owner}/{repo}")
        return self._resolve(self.metadata[(owner, repo)])

    def fetch_raw_file(self, owner, repo, branch, path):
        self.calls.append(('raw', owner, repo, branch, path))
        key = (owner, repo, branch, path)
        if key not in self.raw_files:
            raise NotFoundError(f"HTTP 404: {owner}/{repo}/{branch}/{path}")
        return self._resolve(self.raw_files[key])

    def fetch_file_tree(self, owner, repo, branch='HEAD'):
        self.calls.append(('tree', owner, repo, branch))
        key = (owner, repo, branch)
        if key not in self.trees:
            raise NotFoundError(f"HTTP 404: {owner}/{repo}@{branch}")
        return self._resolve(self.trees[key])

    def download(self, url):
        self.calls.append(('download', url))
        if url not in self.downloads:
            raise NotFoundError(f"HTTP 404: {url}")
        return self._resolve(self.downloads[url])

    def fetch_readme(self, owner, repo):
        self.calls.append(('readme', owner, repo))
        if (owner, repo) not in self.readmes:
            raise NotFoundError(f"HTTP 404: {owner}/{repo}/README.md")
        return self._resolve(self.readmes[(owner, repo)])

    def has_auth_token(self):
        return False

    def count(self, kind):
        return sum(1 for call in self.calls if call[0] == kind)


@pytest.fixture
def fake_client():
    return FakeClient()


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

@pytest.fixture
def cache(tmp_path):
    """Catalog cache in a temporary SQLite file."""
    store = CatalogCache(tmp_path / 'cache' / 'appstore.sqlite3')
    yield store
    store.dispose()


@pytest.fixture
def tracker(tmp_path):
    return InstallTracker(tmp_path)


@pytest.fixture
def plugins_dir(tmp_path):
    path = tmp_path / 'plugins'
    path.mkdir()
    return path


@pytest.fixture
def patches_dir(tmp_path):
    path = tmp_path / 'patches'
    path.mkdir()
    return path


@pytest.fixture
def scanner(plugins_dir, patches_dir):
    return InstallScanner(plugins_dir, patches_dir)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def _set_tree_mtime(path, mtime):
    for root, dirs, files in os.walk(path):
        for name in files:
            os.utime(os.path.join(root, name), (mtime, mtime))
    for root, dirs, files in os.walk(path, topdown=False):
        for name in dirs:
            os.utime(os.path.join(root, name), (mtime, mtime))
    os.utime(path, (mtime, mtime))


@pytest.fixture
def make_plugin(plugins_dir):
    """Create an installed *.koplugin folder with a manifest and a fixed mtime."""
    def _make(dirname, version='1.0.0', name=None, mtime=None):
        folder = plugins_dir / dirname
        folder.mkdir()
        name = name or dirname.replace('.koplugin', '')
        lines = ['local _ = require("gettext")', 'return {', f'    name = "{name}",']
        if version is not None:
            lines.append(f'    version = "{version}",')
        lines.append('    description = _("Test plugin"),')
        lines.append('}')
        (folder / '_meta.lua').write_text('\n'.join(lines) + '\n', encoding='utf-8')
        (folder / 'main.lua').write_text('return {}\n', encoding='utf-8')
        if mtime is not None:
            _set_tree_mtime(folder, mtime)
        return folder
    return _make


@pytest.fixture
def make_patch(patches_dir):
    def _make(filename, content=b'-- patch\n'):
        path = patches_dir / filename
        path.write_bytes(content)
        return path
    return _make


@pytest.fixture
def make_repo():
    """Build a raw GitHub repository payload."""
    def _make(repo_id, name, owner='alice', stars=0, pushed_at='2024-01-01T00:00:00Z',
              created_at='2023-01-01T00:00:00Z', description='', topics=None, language='Lua',
              default_branch='main'):
        return {
            'id': repo_id,
            'name': name,
            'full_name': f'{owner}/{name}',
            'owner': {'login': owner},
            'description': description,
            'stargazers_count': stars,
            'language': language,
            'homepage': None,
            'default_branch': default_branch,
            'pushed_at': pushed_at,
            'created_at': created_at,
            'topics': topics or [],
        }
    return _make


@pytest.fixture
def make_entry(make_repo):
    """Build a CatalogEntry the way the cache decodes it."""
    def _make(repo_id, name, kind=KIND_PLUGIN, **kwargs):
        data = make_repo(repo_id, name, **kwargs)
        return CatalogEntry(
            remote_id=repo_id,
            kind=kind,
            name=name,
            owner=data['owner']['login'],
            full_name=data['full_name'],
            description=data['description'],
            language=data['language'],
            stars=data['stargazers_count'],
            default_branch=data['default_branch'],
            data=data,
        )
    return _make
