"""
AppStore
Catalog refresh, browsing, matching of installed artifacts and patch installation
"""

import argparse
import logging
import os
import re
import sys
import threading
import time
from dataclasses import fields
from datetime import datetime
from pathlib import Path

from appstore_errors import AppStoreError, RateLimitError
from appstore_models import (BrowserState, CatalogEntry, PatchFileEntry, InstallRecord, PatchInstallRecord,
                             UpdateVerdict, KIND_PLUGIN, KIND_PATCH, STATE_UP_TO_DATE, normalize_kind)
from appstore_settings import AppStoreSettings, default_data_dir
from catalog_cache import CatalogCache
from catalog_filter import (SORT_MODE_IDS, BROWSER_PAGE_SIZE, filter_entries, collect_patch_rows,
                            get_filter_summary, get_sort_summary, next_sort_mode, get_owners, paginate)
from content_hasher import blob_sha1
from github_client import GitHubClient, build_raw_url
from install_scanner import InstallScanner, is_patch_filename, META_FILENAME
from install_tracker import InstallTracker, PLUGINS, PATCHES
from logging_setup import setup_logging
from update_checker import UpdateChecker, normalize_meta_path

logger = logging.getLogger(__name__)

PLUGIN_TOPICS = ['koreader-plugin']
PATCH_TOPICS = ['koreader-user-patch']
PLUGIN_NAME_QUERIES = ['in:name ".koplugin" fork:true']
PATCH_NAME_QUERIES = ['in:name "KOReader.patches" fork:true']

SEARCH_PAGE_SIZE = 100
# GitHub serves at most 1000 search results per query
SEARCH_MAX_PAGES = 10
PATCH_CACHE_TTL = 10 * 60
STALE_WARNING_SECONDS = 7 * 24 * 3600
REFRESH_KINDS = (KIND_PLUGIN, KIND_PATCH, 'all')
BROWSER_STATE_FIELDS = frozenset(f.name for f in fields(BrowserState))

IMG_TAG_RE = re.compile(r'<img[^>]*>', re.IGNORECASE)
UNSAFE_NAME_RE = re.compile(r'[^\w-]')


def sanitize_meta_path(path, fallback=None):
    """Normalize a manifest path, using the plugin folder name when missing."""
    normalized = normalize_meta_path(path) if path else None
    if normalized:
        return normalized
    if fallback:
        return normalize_meta_path(fallback)
    return None


def derive_plugin_repo_path(plugin_root):
    """Strip the archive's top-level folder ('repo-main/foo.koplugin' -> 'foo.koplugin')."""
    if not plugin_root:
        return None
    _, sep, rest = plugin_root.partition('/')
    if sep and rest:
        return rest
    return plugin_root


def format_timestamp(ts):
    if not ts:
        return 'Never'
    return datetime.fromtimestamp(ts).strftime('%Y-%m-%d %H:%M')


class AppStore:
    def __init__(self, data_dir=None, client=None, settings=None, cache=None, clock=time.time):
        """Initialize the AppStore service.

        Args:
            data_dir: Optional str/Path - Data directory, APPSTORE_DATA_DIR or ~/.local/share/appstore
            client: Optional GitHubClient - Remote access, created from settings when omitted
            settings: Optional AppStoreSettings - Settings store
            cache: Optional CatalogCache - Catalog cache, created under cache/appstore when omitted
            clock: callable - Returns the current unix time
        """
        self.data_dir = Path(data_dir) if data_dir else default_data_dir()
        self.cache_dir = self.data_dir / 'cache' / 'appstore'
        self.readme_dir = self.cache_dir / 'readme'
        self.plugins_dir = self.data_dir / 'plugins'
        self.patches_dir = self.data_dir / 'patches'
        self.clock = clock

        # Ensure directories exist
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.plugins_dir.mkdir(parents=True, exist_ok=True)
        self.patches_dir.mkdir(parents=True, exist_ok=True)

        self.settings = settings or AppStoreSettings(self.data_dir)
        self.client = client or GitHubClient(self.settings)
        self.cache = cache or CatalogCache(self.cache_dir / 'appstore.sqlite3')
        self.tracker = InstallTracker(self.data_dir)
        self.scanner = InstallScanner(self.plugins_dir, self.patches_dir)
        self.checker = UpdateChecker(self.client, self.tracker, self.scanner, cache=self.cache, clock=clock)

        self.browser_state = self.settings.load_browser_state(SORT_MODE_IDS)
        self.readme_filter = None
        self.patch_cache = {}
        self.is_refreshing = False
        self._refresh_lock = threading.Lock()

    # ------------------------------------------------------------------ refresh

    def _search_all_pages(self, query):
        """Yield every repository of a search, page by page until a short page."""
        for page in range(1, SEARCH_MAX_PAGES + 1):
            payload = self.client.search_repositories(query, page=page, per_page=SEARCH_PAGE_SIZE,
                                                      sort='stars', order='desc')
            items = payload.get('items') or []
            yield from (item for item in items if isinstance(item, dict))
            if len(items) < SEARCH_PAGE_SIZE:
                break

    def fetch_and_store(self, kind, topics, name_queries=None):
        """Run the topic search plus name queries and replace the cached kind.

        Args:
            kind: str - 'plugin' or 'patch'
            topics: list - Topic names combined into one query
            name_queries: Optional list - Additional raw search queries

        Returns:
            int - Number of repositories stored
        """
        queries = []
        topic_parts = [f"topic:{topic}" for topic in topics or [] if topic]
        if topic_parts:
            queries.append(' '.join(topic_parts + ['fork:true']))
        queries.extend(query for query in name_queries or [] if query)

        collected = []
        seen = set()
        for query in queries:
            for repo in self._search_all_pages(query):
                key = repo.get('id') or repo.get('full_name')
                if key is None or key in seen:
                    continue
                seen.add(key)
                collected.append(repo)
            logger.debug("%s query '%s': %d unique repositories so far", kind, query, len(collected))

        return self.cache.store_repos(kind, collected, now=int(self.clock()))

    def refresh_cache(self, kind=None):
        """Refresh the catalog cache from GitHub.

        Only one refresh may run at a time; a concurrent call is rejected.

        Args:
            kind: Optional str - 'plugin', 'patch' or 'all', defaults to the browser kind

        Returns:
            dict - Result with keys:
            - success: bool - Whether the refresh completed
            - message: str - Summary such as 'Cached 12 plugins.'
            - counts: dict - Stored repositories per kind
            - listing_failures: list - Patch repositories whose file listing was kept from before
            - busy: bool - Another refresh is running
            - rate_limited: bool - GitHub rate limit hit
            - error: str - Error message if failed
        """
        kind = kind or self.browser_state.kind
        if kind not in REFRESH_KINDS:
            return {'success': False, 'error': f'Unknown catalog kind: {kind}'}

        if not self._refresh_lock.acquire(blocking=False):
            return {'success': False, 'busy': True, 'error': 'A refresh is already running.'}

        self.is_refreshing = True
        self.patch_cache = {}
        try:
            parts = []
            counts = {}
            listing_failures = []
            if kind in (KIND_PLUGIN, 'all'):
                counts[KIND_PLUGIN] = self.fetch_and_store(KIND_PLUGIN, PLUGIN_TOPICS, PLUGIN_NAME_QUERIES)
                parts.append(f"Cached {counts[KIND_PLUGIN]} plugins.")
            if kind in (KIND_PATCH, 'all'):
                counts[KIND_PATCH] = self.fetch_and_store(KIND_PATCH, PATCH_TOPICS, PATCH_NAME_QUERIES)
                listings = self.refresh_patch_file_listings()
                parts.append(f"Cached {counts[KIND_PATCH]} patch repositories.")
                listing_failures = listings['failed']
                if listing_failures:
                    parts.append(f"Could not list patches of {len(listing_failures)} repositories.")

            summary = ' '.join(parts) or 'AppStore cache refreshed.'
            self.settings.set_setting('status_text', summary)
            logger.info(summary)
            result = {'success': True, 'message': summary, 'counts': counts}
            if listing_failures:
                result['listing_failures'] = listing_failures
            return result
        except AppStoreError as e:
            logger.warning("AppStore refresh failed: %s", e)
            return {
                'success': False,
                'rate_limited': isinstance(e, RateLimitError),
                'error': f'AppStore refresh failed: {e}'
            }
        finally:
            self.is_refreshing = False
            self._refresh_lock.release()

    def fetch_patch_entries_from_github(self, repo):
        """List the patch files of one repository from its git tree.

        Returns:
            list - File dicts sorted by filename, None when the tree could not be fetched
        """
        if not repo.owner or not repo.name:
            return None
        branch = repo.data.get('default_branch') or repo.default_branch or 'HEAD'
        try:
            files = self.client.fetch_file_tree(repo.owner, repo.name, branch)
        except AppStoreError as e:
            logger.warning("Patch tree fetch failed for %s: %s", repo.full_name or repo.name, e)
            return None
        entries = [f for f in files if is_patch_filename(f['filename'])]
        entries.sort(key=lambda f: f['filename'])
        return entries

    def refresh_patch_file_listings(self):
        """Re-enumerate the patch files of every cached patch repository.

        A repository whose tree cannot be fetched keeps its previous listing.
        Listings of repositories no longer in the catalog are dropped.

        Returns:
            dict - stored: int, failed: list of repository full names
        """
        repos = self.cache.list_repos(KIND_PATCH)
        self.cache.prune_patch_files(repo.remote_id for repo in repos)
        stored = 0
        failed = []
        for repo in repos:
            entries = self.fetch_patch_entries_from_github(repo)
            if entries is None:
                failed.append(repo.full_name or repo.name)
                continue
            self.cache.store_patch_files(repo.remote_id, entries)
            stored += 1
        logger.info("Refreshed patch listings of %d repositories (%d failed)", stored, len(failed))
        return {'stored': stored, 'failed': failed}

    # ------------------------------------------------------------------ cache status

    def get_cache_status(self, kind):
        """Count and last refresh time of a cached kind."""
        return {
            'kind': kind,
            'count': self.cache.count_repos(kind),
            'last_fetched': self.cache.get_last_fetched(kind),
        }

    def get_cache_status_line(self, kind):
        status = self.get_cache_status(kind)
        label = 'Plugins' if kind == KIND_PLUGIN else 'Patches'
        return f"{label} cached: {status['count']} (last update: {format_timestamp(status['last_fetched'])})"

    def get_cache_warning(self, kind):
        """Warn about an empty or stale cache.

        Returns:
            tuple - (message or None, is_empty)
        """
        ts = self.cache.get_last_fetched(kind)
        if not ts or ts <= 0:
            return 'Cache empty. Refresh to retrieve repositories.', True
        if int(self.clock()) - ts > STALE_WARNING_SECONDS:
            return 'Cache is older than a week, consider refreshing.', False
        return None, False

    # ------------------------------------------------------------------ browsing

    def get_repo_descriptors(self, kind=None):
        return self.cache.list_repos(normalize_kind(kind or self.browser_state.kind))

    def get_patch_entries_for_repo(self, repo):
        """Cached patch files of a repository, memoized for PATCH_CACHE_TTL seconds."""
        key = repo.remote_id or repo.key
        now = int(self.clock())
        memo = self.patch_cache.get(key)
        if memo and now - memo['timestamp'] < PATCH_CACHE_TTL:
            return memo['entries']

        entries = self.cache.list_patch_files(repo.remote_id) if repo.remote_id else []
        entries.sort(key=lambda entry: entry.filename or '')
        self.patch_cache[key] = {'entries': entries, 'timestamp': now}
        return entries

    def update_readme_filter(self):
        """Run the remote README/description search for the current search text.

        A failure of every query leaves the filter unset so browsing falls
        back to local matching.

        Returns:
            set - Matching full names, or None
        """
        self.readme_filter = None
        state = self.browser_state
        search = (state.search_text or '').strip()
        if not state.search_in_readme or not search:
            return None

        base = f"{search} in:readme,description"
        if state.kind == KIND_PLUGIN:
            queries = [f"{base} topic:{PLUGIN_TOPICS[0]}", f'{base} in:name ".koplugin"']
        else:
            queries = [f"{base} topic:{PATCH_TOPICS[0]}", f'{base} in:name "KOReader.patches"']

        matches = set()
        any_ok = False
        for query in queries:
            try:
                for repo in self._search_all_pages(query):
                    key = repo.get('full_name') or repo.get('name')
                    if key:
                        matches.add(key)
                any_ok = True
            except AppStoreError as e:
                logger.warning("AppStore README search error (%s): %s", query, e)

        if not any_ok:
            return None
        self.readme_filter = {'kind': state.kind, 'search': search, 'matches': matches}
        return matches

    def _current_readme_matches(self):
        rf = self.readme_filter
        state = self.browser_state
        if not rf or not state.search_in_readme:
            return None
        if rf['kind'] != state.kind or rf['search'] != (state.search_text or '').strip():
            return None
        return rf['matches']

    def get_filtered_descriptors(self):
        """Cached repositories of the browser kind after filters and sort."""
        return filter_entries(
            self.get_repo_descriptors(),
            self.browser_state,
            patch_lookup=self.get_patch_entries_for_repo,
            remote_matches=self._current_readme_matches(),
        )

    def collect_patch_entries(self, repos):
        """One row per matching patch file of the given repositories."""
        return collect_patch_rows(repos, self.browser_state, self.get_patch_entries_for_repo,
                                  remote_matches=self._current_readme_matches())

    def get_browser_page(self):
        """Build the current browser page.

        Returns:
            dict - items (CatalogEntry, or patch rows for patches), page,
            total_pages, total, filter_summary, sort_summary, cache_status, cache_warning
        """
        state = self.browser_state
        items = self.get_filtered_descriptors()
        if state.kind == KIND_PATCH:
            items = self.collect_patch_entries(items)
        page_items, page, total_pages = paginate(items, state.page, BROWSER_PAGE_SIZE)
        state.page = page
        warning, _ = self.get_cache_warning(state.kind)
        return {
            'items': page_items,
            'page': page,
            'total_pages': total_pages,
            'total': len(items),
            'filter_summary': get_filter_summary(state),
            'sort_summary': get_sort_summary(state.sort_mode),
            'cache_status': self.get_cache_status_line(state.kind),
            'cache_warning': warning,
        }

    def get_owners(self, kind=None):
        return get_owners(self.get_repo_descriptors(kind))

    def update_browser_state(self, **changes):
        """Apply filter changes, reset paging and persist the state.

        Args:
            **changes: BrowserState fields (kind, search_text, owner, min_stars, sort_mode, search_in_readme)

        Returns:
            BrowserState - Updated state
        """
        unknown = changes.keys() - BROWSER_STATE_FIELDS
        if unknown:
            raise ValueError(f"Unknown browser state field: {', '.join(sorted(unknown))}")

        # Coerce values the same way persisted state is loaded
        state = BrowserState.from_dict({**self.browser_state.to_dict(), **changes}, SORT_MODE_IDS)
        self.browser_state = state
        if changes.keys() - {'page', 'scroll_offset'}:
            state.reset_paging()
        if changes.keys() & {'search_text', 'search_in_readme', 'kind'}:
            self.readme_filter = None
        self.save_browser_state()
        return state

    def cycle_sort_mode(self):
        return self.update_browser_state(sort_mode=next_sort_mode(self.browser_state.sort_mode))

    def reset_filters(self):
        return self.update_browser_state(search_text='', owner='', min_stars=0, search_in_readme=False)

    def save_browser_state(self):
        return self.settings.save_browser_state(self.browser_state)

    # ------------------------------------------------------------------ matching

    def get_unmatched_plugins(self):
        """Installed plugins without a record naming owner and repo."""
        records = self.tracker.list_all(PLUGINS)
        unmatched = []
        for plugin in self.scanner.list_installed_plugins():
            record = records.get(plugin['dirname'])
            if not (record and record.is_matched):
                unmatched.append(plugin)
        return unmatched

    def get_unmatched_patches(self):
        records = self.tracker.list_all(PATCHES)
        unmatched = []
        for patch in self.scanner.list_installed_patches():
            record = records.get(patch['filename'])
            if not (record and record.is_matched):
                unmatched.append(patch)
        return unmatched

    def build_install_record(self, dirname, plugin_name, installed_version, repo, meta_path):
        if not dirname:
            return None
        owner = repo.owner if repo else None
        name = repo.name if repo else None
        return InstallRecord(
            dirname=dirname,
            plugin_name=plugin_name,
            installed_version=installed_version,
            owner=owner,
            repo=name,
            repo_full_name=(repo.full_name or (f"{owner}/{name}" if owner and name else None)) if repo else None,
            repo_id=repo.remote_id if repo else None,
            repo_description=repo.description if repo else None,
            branch=(repo.data.get('default_branch') or repo.default_branch or 'HEAD') if repo else 'HEAD',
            meta_path=meta_path,
            matched_at=int(self.clock()),
        )

    def build_patch_record(self, filename, repo, patch_entry):
        if not filename or repo is None:
            return None
        owner = repo.owner
        branch = getattr(patch_entry, 'branch', None) or repo.data.get('default_branch') or repo.default_branch
        return PatchInstallRecord(
            filename=filename,
            owner=owner,
            repo=repo.name,
            repo_full_name=repo.full_name or (f"{owner}/{repo.name}" if owner else repo.name),
            repo_id=repo.remote_id,
            repo_description=repo.description,
            branch=branch or 'HEAD',
            path=getattr(patch_entry, 'path', None),
            sha=getattr(patch_entry, 'sha', None),
            download_url=getattr(patch_entry, 'download_url', None),
            matched_at=int(self.clock()),
        )

    def match_plugin_with_repo(self, plugin, repo):
        """Link an installed plugin with a catalog repository.

        Args:
            plugin: dict/str - Scanner entry or plugin directory name
            repo: CatalogEntry - Repository chosen by the user

        Returns:
            dict - Result with success, message, record or error
        """
        if isinstance(plugin, str):
            plugin = self.scanner.find_installed_plugin(plugin)
        if not plugin or repo is None:
            return {'success': False, 'error': 'Unable to store match for plugin.'}

        meta_path = sanitize_meta_path(plugin.get('meta_path_hint'), plugin['dirname'])
        record = self.build_install_record(plugin['dirname'], plugin.get('name'), plugin.get('version'),
                                           repo, meta_path)
        if not self.tracker.upsert(PLUGINS, record.dirname, record):
            return {'success': False, 'error': 'Unable to store match for plugin.'}
        self.checker.forget(KIND_PLUGIN, record.dirname)
        return {
            'success': True,
            'message': f"Matched {plugin.get('name') or plugin['dirname']} with {repo.full_name or repo.name}.",
            'record': record
        }

    def match_patch_with_repo(self, patch, repo, patch_entry):
        """Link an installed patch with a patch file of a catalog repository."""
        if isinstance(patch, str):
            patch = self.scanner.find_installed_patch(patch)
        if not patch or repo is None or patch_entry is None:
            return {'success': False, 'error': 'Unable to store match for patch.'}

        record = self.build_patch_record(patch['filename'], repo, patch_entry)
        if not self.tracker.upsert(PATCHES, record.filename, record):
            return {'success': False, 'error': 'Unable to store match for patch.'}
        self.checker.forget(KIND_PATCH, record.filename)
        return {
            'success': True,
            'message': f"Matched {patch['filename']} with {repo.full_name or repo.name}.",
            'record': record
        }

    def remember_install(self, info, repo):
        """Record a plugin installed from a repository archive.

        Args:
            info: dict - plugin_dirname, plugin_name, plugin_version and
                optionally plugin_root (folder path inside the archive)
            repo: CatalogEntry - Source repository

        Returns:
            InstallRecord - Stored record or None
        """
        if not info or not info.get('plugin_dirname'):
            return None
        dirname = info['plugin_dirname']
        meta_path = None
        if info.get('plugin_root'):
            meta_path = sanitize_meta_path(derive_plugin_repo_path(info['plugin_root']), dirname)
        meta_path = meta_path or f"{dirname}/{META_FILENAME}"

        record = self.build_install_record(dirname, info.get('plugin_name'), info.get('plugin_version'),
                                           repo, meta_path)
        if record and self.tracker.upsert(PLUGINS, dirname, record):
            self.checker.forget(KIND_PLUGIN, dirname)
            return record
        return None

    def remember_patch_install(self, filename, repo, patch_entry):
        record = self.build_patch_record(filename, repo, patch_entry)
        if record and self.tracker.upsert(PATCHES, filename, record):
            return record
        return None

    # ------------------------------------------------------------------ install / update

    def install_patch_from_repo(self, repo, patch):
        """Download a patch file into the patches directory and record it.

        The file is written next to its target and renamed into place.

        Args:
            repo: CatalogEntry - Patch repository
            patch: PatchFileEntry - File to install

        Returns:
            dict - Result with success, message, record (None plus a warning when
            the registry write failed) or error
        """
        if not repo.owner or not repo.name:
            return {'success': False, 'error': 'Missing repository metadata for patch install.'}
        filename = patch.filename
        if not filename or Path(filename).name != filename:
            return {'success': False, 'error': f'Invalid patch filename: {filename}'}

        url = patch.download_url or build_raw_url(repo.owner, repo.name, patch.branch or 'HEAD', patch.path)
        if not url:
            return {'success': False, 'error': 'Unable to determine patch download URL.'}

        try:
            content = self.client.download(url)
        except AppStoreError as e:
            logger.warning("Patch download failed (%s): %s", url, e)
            return {'success': False, 'error': f'Download failed: {e}'}

        target_path = self.patches_dir / filename
        temp_path = target_path.with_name(filename + '.download')
        try:
            self.patches_dir.mkdir(parents=True, exist_ok=True)
            temp_path.write_bytes(content)
            os.replace(temp_path, target_path)
        except OSError as e:
            logger.error("Failed to install patch %s: %s", filename, e)
            if temp_path.exists():
                temp_path.unlink()
            return {'success': False, 'error': f'Failed to install patch: {e}'}

        record = self.remember_patch_install(filename, repo, patch)
        local_sha = blob_sha1(content)
        self.checker.remote_info[KIND_PATCH][filename] = UpdateVerdict(
            key=filename,
            kind=KIND_PATCH,
            state=STATE_UP_TO_DATE,
            last_checked=int(self.clock()),
            local_sha=local_sha,
            remote_sha=patch.sha or local_sha,
            download_url=url,
        )
        logger.info("Installed patch %s from %s", filename, repo.full_name)
        message = f'Installed patch "{filename}".'
        if record is None:
            logger.warning("Installed patch %s but could not record its source", filename)
            warning = 'Could not record the patch source; it will show as unmatched.'
            return {'success': True, 'message': f'{message} {warning}', 'warning': warning, 'record': None}
        return {'success': True, 'message': message, 'record': record}

    def update_patch(self, filename):
        """Re-download a matched patch from its recorded location."""
        record = self.tracker.get(PATCHES, filename)
        if record is None or not record.is_matched:
            return {'success': False, 'error': f'Patch "{filename}" is not matched with a repository.'}

        verdict = self.checker.get_last_verdict(KIND_PATCH, filename)
        repo = CatalogEntry(
            remote_id=record.repo_id or 0,
            kind=KIND_PATCH,
            name=record.repo,
            owner=record.owner,
            full_name=record.repo_full_name or f"{record.owner}/{record.repo}",
            description=record.repo_description or '',
            default_branch=record.branch or 'HEAD',
        )
        patch = PatchFileEntry(
            repo_id=record.repo_id or 0,
            path=record.path,
            filename=filename,
            branch=record.branch or 'HEAD',
            sha=(verdict.remote_sha if verdict else None) or record.sha,
            download_url=(verdict.download_url if verdict else None) or record.download_url,
        )
        return self.install_patch_from_repo(repo, patch)

    def check_updates(self, kind, should_cancel=None, progress=None):
        """Run a batch update check.

        Returns:
            BatchResult - Verdicts and summary counts
        """
        if normalize_kind(kind) == KIND_PATCH:
            return self.checker.check_all_patches(should_cancel=should_cancel, progress=progress)
        return self.checker.check_all_plugins(should_cancel=should_cancel, progress=progress)

    def fetch_readme(self, owner, repo):
        """Download a README, strip inline images and store it in the README cache.

        Returns:
            dict - Result with success and path, or error
        """
        if not owner or not repo:
            return {'success': False, 'error': 'Missing owner/repo'}
        try:
            body = self.client.fetch_readme(owner, repo)
        except AppStoreError as e:
            logger.warning("README fetch failed for %s/%s: %s", owner, repo, e)
            return {'success': False, 'error': str(e)}
        if not body:
            return {'success': False, 'error': 'Empty README'}

        body = IMG_TAG_RE.sub('', body)
        path = self.readme_dir / f"{UNSAFE_NAME_RE.sub('_', owner)}_{UNSAFE_NAME_RE.sub('_', repo)}_README.md"
        try:
            self.readme_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(body, encoding='utf-8')
        except OSError as e:
            logger.error("Could not write README %s: %s", path, e)
            return {'success': False, 'error': str(e)}
        return {'success': True, 'path': path}

    def close(self):
        self.cache.dispose()


def main(argv=None):
    """Command line entry point: refresh the catalog or check installed artifacts for updates."""
    parser = argparse.ArgumentParser(description='Community AppStore manager')
    parser.add_argument('--data-dir', help='Data directory (default: APPSTORE_DATA_DIR or ~/.local/share/appstore)')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)
    refresh_parser = subparsers.add_parser('refresh', help='Refresh the catalog cache')
    refresh_parser.add_argument('kind', nargs='?', default='all', choices=REFRESH_KINDS)
    check_parser = subparsers.add_parser('check', help='Check installed plugins or patches for updates')
    check_parser.add_argument('kind', nargs='?', default=KIND_PLUGIN, choices=(KIND_PLUGIN, KIND_PATCH))
    args = parser.parse_args(argv)

    store = AppStore(args.data_dir)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO, store.data_dir / 'logs' / 'appstore.log')
    try:
        if args.command == 'refresh':
            result = store.refresh_cache(args.kind)
            print(result['message'] if result['success'] else result['error'])
            return 0 if result['success'] else 1

        result = store.check_updates(args.kind)
        for key, verdict in sorted(result.verdicts.items()):
            line = f"{key}: {verdict.state}"
            if verdict.error:
                line += f" ({verdict.error})"
            print(line)
        summary = result.summary
        print(f"{summary['total']} checked, {summary['updates']} update(s), {summary['failed']} failed, "
              f"{summary['unmatched']} unmatched")
        return 0
    finally:
        store.close()


if __name__ == '__main__':
    sys.exit(main())
