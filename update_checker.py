"""
Update Checker
Reconciles installed plugins and patches against their upstream repositories
"""

import logging
import re
import time
from itertools import product

from appstore_errors import AppStoreError, NotFoundError, DecodeError
from appstore_models import (InstallRecord, PatchInstallRecord, UpdateVerdict, BatchResult,
                             KIND_PLUGIN, KIND_PATCH, STATE_UNMATCHED, STATE_CHECK_FAILED,
                             STATE_UP_TO_DATE, STATE_NEEDS_UPDATE, parse_github_timestamp)
from content_hasher import compute_blob_sha1
from install_scanner import extract_meta_field, is_patch_filename, PLUGIN_SUFFIX, META_FILENAME
from install_tracker import PLUGINS, PATCHES
from version_compare import is_version_newer

logger = logging.getLogger(__name__)

FALLBACK_BRANCHES = ('HEAD', 'main', 'master')


class CheckCancelled(Exception):
    """Raised between remote fetches once cancellation was requested."""


def _check_cancelled(should_cancel):
    if should_cancel is not None and should_cancel():
        raise CheckCancelled()


def normalize_meta_path(path):
    """Turn a plugin folder or manifest path into a repository manifest path.

    'foo' -> 'foo.koplugin/_meta.lua', 'a/foo.koplugin/_meta.lua' unchanged.
    """
    if not path:
        return None
    normalized = path.lstrip('/')
    if not normalized:
        return None
    if normalized == META_FILENAME or normalized.endswith('/' + META_FILENAME):
        return normalized
    if not normalized.endswith(PLUGIN_SUFFIX):
        normalized += PLUGIN_SUFFIX
    return f"{normalized}/{META_FILENAME}"


def build_meta_path_candidates(record, meta_path_hint=None):
    """Ordered, de-duplicated manifest paths to try for a plugin record.

    Recorded path first, then variants without the .koplugin suffix,
    then paths derived from the folder name, then a bare root _meta.lua.
    """
    candidates = []

    def add(path):
        normalized = normalize_meta_path(path)
        if normalized and normalized not in candidates:
            candidates.append(normalized)

    meta_path = getattr(record, 'meta_path', None)
    add(meta_path)
    add(meta_path_hint)
    for path in (meta_path, meta_path_hint):
        if path:
            add(re.sub(r'\.koplugin/_meta\.lua$', '/_meta.lua', path))

    dirname = getattr(record, 'dirname', None)
    if dirname:
        add(f"{dirname}/{META_FILENAME}")
        if dirname.endswith(PLUGIN_SUFFIX):
            add(f"{dirname[:-len(PLUGIN_SUFFIX)]}/{META_FILENAME}")

    add(META_FILENAME)
    return candidates


def build_branch_candidates(record):
    """Recorded branch first, then HEAD, main and master."""
    candidates = []
    for branch in (getattr(record, 'branch', None),) + FALLBACK_BRANCHES:
        if branch and branch not in candidates:
            candidates.append(branch)
    return candidates


def iter_manifest_candidates(record, meta_path_hint=None):
    """Yield (meta_path, branch) pairs, every branch for a path before the next path."""
    return product(build_meta_path_candidates(record, meta_path_hint), build_branch_candidates(record))


class UpdateChecker:
    def __init__(self, client, tracker, scanner, cache=None, clock=time.time):
        """Initialize update checker.

        Args:
            client: GitHubClient - Remote access
            tracker: InstallTracker - Install records
            scanner: InstallScanner - Local filesystem state
            cache: Optional CatalogCache - Receives freshly fetched patch listings
            clock: callable - Returns the current unix time
        """
        self.client = client
        self.tracker = tracker
        self.scanner = scanner
        self.cache = cache
        self.clock = clock
        # Last verdict per artifact, kept until the next check
        self.remote_info = {KIND_PLUGIN: {}, KIND_PATCH: {}}
        self.last_checked = {KIND_PLUGIN: None, KIND_PATCH: None}

    def _now(self):
        return int(self.clock())

    def _verdict(self, key, kind, state, **kwargs):
        return UpdateVerdict(key=key, kind=kind, state=state, last_checked=self._now(), **kwargs)

    # ------------------------------------------------------------------ plugins

    def check_plugin(self, record, installed=None, should_cancel=None):
        """Reconcile one plugin record.

        Args:
            record: InstallRecord - Registry record
            installed: Optional dict - Scanner entry, looked up when omitted
            should_cancel: Optional callable - Checked before every remote fetch

        Returns:
            UpdateVerdict - Never raises for remote or parse failures

        Raises:
            CheckCancelled - should_cancel returned True mid-check
        """
        key = record.dirname
        if installed is None:
            installed = self.scanner.find_installed_plugin(key)
        if installed is None:
            return self._verdict(key, KIND_PLUGIN, STATE_UNMATCHED, missing_locally=True,
                                 local_version=record.installed_version,
                                 error='Installed plugin folder not found.')

        local_version = installed.get('version') or record.installed_version
        local_ts = installed.get('latest_mtime') or 0
        if not record.is_matched:
            return self._verdict(key, KIND_PLUGIN, STATE_UNMATCHED, local_version=local_version,
                                 local_latest_ts=local_ts, error='Not matched with a repository.')

        _check_cancelled(should_cancel)
        try:
            metadata = self.client.fetch_repo_metadata(record.owner, record.repo)
        except AppStoreError as e:
            logger.warning("Metadata check failed for %s (%s/%s): %s", key, record.owner, record.repo, e)
            return self._verdict(key, KIND_PLUGIN, STATE_CHECK_FAILED, error=str(e),
                                 local_version=local_version, local_latest_ts=local_ts)

        remote_ts = parse_github_timestamp(metadata.get('pushed_at') or metadata.get('created_at'))
        try:
            remote_version = self._find_remote_version(record, installed.get('meta_path_hint'), should_cancel)
        except AppStoreError as e:
            logger.warning("Manifest check failed for %s (%s/%s): %s", key, record.owner, record.repo, e)
            return self._verdict(key, KIND_PLUGIN, STATE_CHECK_FAILED, error=str(e),
                                 local_version=local_version, local_latest_ts=local_ts,
                                 remote_repo_ts=remote_ts)

        remote_newer_by_date = remote_ts > local_ts
        if remote_newer_by_date:
            needs_update = True
        else:
            needs_update = is_version_newer(remote_version, local_version)

        return self._verdict(
            key, KIND_PLUGIN, STATE_NEEDS_UPDATE if needs_update else STATE_UP_TO_DATE,
            local_version=local_version,
            remote_version=remote_version,
            remote_repo_ts=remote_ts,
            local_latest_ts=local_ts,
            remote_newer_by_date=remote_newer_by_date,
        )

    def _find_remote_version(self, record, meta_path_hint=None, should_cancel=None):
        """Walk manifest path/branch candidates until one yields a version.

        A 404 moves on to the next candidate; any other failure aborts.
        A manifest that resolves is remembered in the registry.

        Returns:
            str - Remote version

        Raises:
            AppStoreError - Last error once every candidate is exhausted
            CheckCancelled - should_cancel returned True between candidates
        """
        last_error = None
        for meta_path, branch in iter_manifest_candidates(record, meta_path_hint):
            _check_cancelled(should_cancel)
            try:
                body = self.client.fetch_raw_file(record.owner, record.repo, branch, meta_path)
            except NotFoundError as e:
                last_error = e
                continue

            version = extract_meta_field(body, 'version')
            if not version:
                last_error = DecodeError('Remote version not found.')
                continue

            if record.meta_path != meta_path or record.branch != branch:
                logger.info("Rediscovered manifest for %s at %s@%s", record.dirname, meta_path, branch)
                self.tracker.update_fields(PLUGINS, record.dirname, {'meta_path': meta_path, 'branch': branch})
                record.meta_path = meta_path
                record.branch = branch
            return version

        raise last_error or NotFoundError('Remote version not found.')

    def _plugin_batch_items(self, records):
        installed = {p['dirname']: p for p in self.scanner.list_installed_plugins()}
        if records is None:
            records = self.tracker.list_all(PLUGINS)
            for dirname, plugin in installed.items():
                if dirname not in records:
                    records[dirname] = InstallRecord(dirname=dirname, plugin_name=plugin['name'],
                                                     installed_version=plugin['version'])
        elif isinstance(records, list):
            records = {record.dirname: record for record in records}
        return [(key, records[key], installed.get(key)) for key in sorted(records)]

    def check_all_plugins(self, records=None, should_cancel=None, progress=None):
        """Check a batch of plugins sequentially.

        Args:
            records: Optional dict/list - InstallRecords, defaults to every tracked
                record plus installed plugins without one
            should_cancel: Optional callable - Returning True stops before the next
                remote fetch; the plugin being checked gets no verdict
            progress: Optional callable - progress(key, index, total)

        Returns:
            BatchResult - Verdicts gathered so far, even when cancelled
        """
        items = [(key, (record, installed)) for key, record, installed in self._plugin_batch_items(records)]
        return self._run_batch(KIND_PLUGIN, items,
                               lambda pair: self.check_plugin(*pair, should_cancel=should_cancel),
                               should_cancel, progress)

    # ------------------------------------------------------------------ patches

    def check_patch(self, record, listings=None):
        """Reconcile one patch record by comparing git blob digests.

        Args:
            record: PatchInstallRecord - Registry record
            listings: Optional dict - Per-batch memo of remote file listings

        Returns:
            UpdateVerdict - Never raises for remote failures
        """
        key = record.filename
        installed = self.scanner.find_installed_patch(key)
        if installed is None:
            return self._verdict(key, KIND_PATCH, STATE_UNMATCHED, missing_locally=True,
                                 error='Installed patch file not found.')
        if not record.is_matched:
            return self._verdict(key, KIND_PATCH, STATE_UNMATCHED, error='Not matched with a repository.')

        try:
            files = self._get_remote_listing(record, listings if listings is not None else {})
        except AppStoreError as e:
            logger.warning("Patch listing failed for %s (%s/%s): %s", key, record.owner, record.repo, e)
            return self._verdict(key, KIND_PATCH, STATE_CHECK_FAILED, error=str(e),
                                 download_url=record.download_url)

        entry = files.get(record.path)
        if entry is None:
            return self._verdict(key, KIND_PATCH, STATE_CHECK_FAILED,
                                 error='Patch file not found in repository.',
                                 download_url=record.download_url)

        try:
            local_sha = compute_blob_sha1(installed['path'])
        except OSError as e:
            logger.warning("Cannot hash local patch %s: %s", installed['path'], e)
            local_sha = None

        remote_sha = entry.get('sha') or None
        needs_update = bool(remote_sha) and local_sha != remote_sha
        return self._verdict(
            key, KIND_PATCH, STATE_NEEDS_UPDATE if needs_update else STATE_UP_TO_DATE,
            local_sha=local_sha,
            remote_sha=remote_sha,
            download_url=entry.get('download_url') or record.download_url,
        )

    def _get_remote_listing(self, record, listings):
        """Fetch (once per batch) the file map of the record's repository/branch."""
        memo_key = (record.owner, record.repo, record.branch or 'HEAD')
        if memo_key in listings:
            cached = listings[memo_key]
            if isinstance(cached, AppStoreError):
                raise cached
            return cached

        try:
            files = self.client.fetch_file_tree(record.owner, record.repo, record.branch or 'HEAD')
        except AppStoreError as e:
            listings[memo_key] = e
            raise

        file_map = {f['path']: f for f in files}
        listings[memo_key] = file_map

        if self.cache is not None and record.repo_id:
            patch_files = [f for f in files if is_patch_filename(f['filename'])]
            try:
                self.cache.store_patch_files(record.repo_id, patch_files)
            except AppStoreError as e:
                logger.warning("Could not cache patch listing of %s/%s: %s", record.owner, record.repo, e)
        return file_map

    def _patch_batch_items(self, records):
        if records is None:
            records = self.tracker.list_all(PATCHES)
            for patch in self.scanner.list_installed_patches():
                if patch['filename'] not in records:
                    records[patch['filename']] = PatchInstallRecord(filename=patch['filename'])
        elif isinstance(records, list):
            records = {record.filename: record for record in records}
        return [(key, records[key]) for key in sorted(records)]

    def check_all_patches(self, records=None, should_cancel=None, progress=None):
        """Check a batch of patches sequentially; see check_all_plugins."""
        listings = {}
        items = self._patch_batch_items(records)
        return self._run_batch(KIND_PATCH, items, lambda record: self.check_patch(record, listings),
                               should_cancel, progress)

    # ------------------------------------------------------------------ batch

    def _run_batch(self, kind, items, check, should_cancel, progress):
        result = BatchResult(kind=kind)
        total = len(items)

        for idx, (key, item) in enumerate(items):
            if should_cancel is not None and should_cancel():
                logger.info("%s update check cancelled after %d/%d", kind, idx, total)
                result.cancelled = True
                break

            if progress is not None:
                progress(key, idx, total)

            try:
                verdict = check(item)
            except CheckCancelled:
                logger.info("%s update check cancelled during %s (%d/%d)", kind, key, idx, total)
                result.cancelled = True
                break
            except (AppStoreError, OSError) as e:
                logger.warning("Update check of %s %s failed: %s", kind, key, e)
                verdict = self._verdict(key, kind, STATE_CHECK_FAILED, error=str(e))

            result.verdicts[key] = verdict
            self.remote_info[kind][key] = verdict
            if verdict.missing_locally:
                result.orphaned.append(key)

        if not result.cancelled:
            self.last_checked[kind] = self._now()
        logger.info("Checked %d %s(s): %s", len(result.verdicts), kind, result.summary)
        return result

    def get_last_verdict(self, kind, key):
        return self.remote_info.get(kind, {}).get(key)

    def forget(self, kind, key):
        self.remote_info.get(kind, {}).pop(key, None)
