"""
AppStore Models
Plain data records shared by the cache, the registry and the update checker
"""

from dataclasses import dataclass, field, asdict, fields
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

KIND_PLUGIN = 'plugin'
KIND_PATCH = 'patch'
KINDS = (KIND_PLUGIN, KIND_PATCH)

STATE_UNMATCHED = 'unmatched'
STATE_CHECK_FAILED = 'check_failed'
STATE_UP_TO_DATE = 'up_to_date'
STATE_NEEDS_UPDATE = 'needs_update'

DEFAULT_SORT_MODE = 'stars_desc'


def parse_github_timestamp(value):
    """Convert a GitHub ISO-8601 timestamp to unix seconds.

    Args:
        value: str - e.g. '2024-03-01T12:00:00Z'

    Returns:
        int - Unix timestamp, 0 when missing or malformed
    """
    if not isinstance(value, str) or not value:
        return 0
    try:
        parsed = datetime.strptime(value[:19], '%Y-%m-%dT%H:%M:%S')
    except ValueError:
        return 0
    return int(parsed.replace(tzinfo=timezone.utc).timestamp())


def normalize_kind(kind):
    return KIND_PATCH if kind == KIND_PATCH else KIND_PLUGIN


@dataclass
class CatalogEntry:
    """One cached remote repository."""

    remote_id: int
    kind: str
    name: str
    owner: str = ''
    full_name: str = ''
    description: str = ''
    language: str = ''
    homepage: str = ''
    stars: int = 0
    default_branch: str = 'HEAD'
    fetched_at: int = 0
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def pushed_ts(self):
        return parse_github_timestamp(self.data.get('pushed_at'))

    @property
    def created_ts(self):
        return parse_github_timestamp(self.data.get('created_at'))

    @property
    def topics(self):
        topics = self.data.get('topics')
        return topics if isinstance(topics, list) else []

    @property
    def key(self):
        """Identity used by remote README matches."""
        if self.full_name:
            return self.full_name
        if self.owner and self.name:
            return f"{self.owner}/{self.name}"
        return self.name


@dataclass
class PatchFileEntry:
    """One patch script inside a patch repository."""

    repo_id: int
    path: str
    filename: str
    branch: str = 'HEAD'
    sha: Optional[str] = None
    size: int = 0
    download_url: Optional[str] = None
    fetched_at: int = 0


class _RecordMixin:
    """dict round-tripping for records stored in the JSON registry."""

    @classmethod
    def from_dict(cls, key, data):
        data = data or {}
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values[cls._key_field] = key
        return cls(**values)

    def to_dict(self):
        return asdict(self)

    @property
    def is_matched(self):
        return bool(self.owner and self.repo)


@dataclass
class InstallRecord(_RecordMixin):
    """Installed plugin directory matched with an upstream repository."""

    _key_field = 'dirname'

    dirname: str
    plugin_name: Optional[str] = None
    installed_version: Optional[str] = None
    owner: Optional[str] = None
    repo: Optional[str] = None
    repo_full_name: Optional[str] = None
    repo_id: Optional[int] = None
    repo_description: Optional[str] = None
    branch: Optional[str] = None
    meta_path: Optional[str] = None
    matched_at: Optional[int] = None


@dataclass
class PatchInstallRecord(_RecordMixin):
    """Installed patch file matched with a file in an upstream repository."""

    _key_field = 'filename'

    filename: str
    owner: Optional[str] = None
    repo: Optional[str] = None
    repo_full_name: Optional[str] = None
    repo_id: Optional[int] = None
    repo_description: Optional[str] = None
    branch: Optional[str] = None
    path: Optional[str] = None
    sha: Optional[str] = None
    download_url: Optional[str] = None
    matched_at: Optional[int] = None

    @property
    def is_matched(self):
        return bool(self.owner and self.repo and self.path)


@dataclass
class BrowserState:
    """Filter, sort and paging state of the catalog browser."""

    kind: str = KIND_PLUGIN
    search_text: str = ''
    owner: str = ''
    min_stars: int = 0
    page: int = 1
    scroll_offset: Optional[Dict[str, float]] = None
    sort_mode: str = DEFAULT_SORT_MODE
    search_in_readme: bool = False

    @classmethod
    def from_dict(cls, data, valid_sort_modes=None):
        """Build a normalized state from a persisted dict.

        Args:
            data: dict - Persisted state (may be partial or malformed)
            valid_sort_modes: Optional iterable - Accepted sort mode ids

        Returns:
            BrowserState - Normalized state
        """
        if not isinstance(data, dict):
            data = {}
        state = cls(
            kind=normalize_kind(data.get('kind')),
            search_text=data.get('search_text') if isinstance(data.get('search_text'), str) else '',
            owner=data.get('owner') if isinstance(data.get('owner'), str) else '',
            min_stars=_to_int(data.get('min_stars'), 0),
            page=max(1, _to_int(data.get('page'), 1)),
            scroll_offset=_normalize_scroll_offset(data.get('scroll_offset')),
            sort_mode=data.get('sort_mode') or DEFAULT_SORT_MODE,
            search_in_readme=data.get('search_in_readme') is True,
        )
        if valid_sort_modes is not None and state.sort_mode not in valid_sort_modes:
            state.sort_mode = DEFAULT_SORT_MODE
        return state

    def to_dict(self):
        return {
            'kind': normalize_kind(self.kind),
            'search_text': self.search_text or '',
            'owner': self.owner or '',
            'min_stars': _to_int(self.min_stars, 0),
            'page': max(1, _to_int(self.page, 1)),
            'scroll_offset': _normalize_scroll_offset(self.scroll_offset),
            'sort_mode': self.sort_mode or DEFAULT_SORT_MODE,
            'search_in_readme': self.search_in_readme is True,
        }

    def reset_paging(self):
        self.page = 1
        self.scroll_offset = None


@dataclass
class UpdateVerdict:
    """Outcome of reconciling one installed artifact against upstream."""

    key: str
    kind: str
    state: str
    error: Optional[str] = None
    last_checked: int = 0
    missing_locally: bool = False
    # plugin form
    local_version: Optional[str] = None
    remote_version: Optional[str] = None
    remote_repo_ts: int = 0
    local_latest_ts: int = 0
    remote_newer_by_date: bool = False
    # patch form
    local_sha: Optional[str] = None
    remote_sha: Optional[str] = None
    download_url: Optional[str] = None

    @property
    def needs_update(self):
        return self.state == STATE_NEEDS_UPDATE


@dataclass
class BatchResult:
    """Verdicts of one batch check plus summary counts."""

    kind: str
    verdicts: Dict[str, UpdateVerdict] = field(default_factory=dict)
    cancelled: bool = False
    orphaned: List[str] = field(default_factory=list)

    @property
    def summary(self):
        counts = {
            'total': len(self.verdicts),
            'tracked': 0,
            'unmatched': 0,
            'updates': 0,
            'failed': 0,
            'orphaned': len(self.orphaned),
        }
        for verdict in self.verdicts.values():
            if verdict.state == STATE_UNMATCHED:
                counts['unmatched'] += 1
                continue
            counts['tracked'] += 1
            if verdict.state == STATE_NEEDS_UPDATE:
                counts['updates'] += 1
            elif verdict.state == STATE_CHECK_FAILED:
                counts['failed'] += 1
        return counts


def _to_int(value, default):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _normalize_scroll_offset(offset):
    if not isinstance(offset, dict):
        return None
    try:
        return {'x': float(offset['x']), 'y': float(offset['y'])}
    except (KeyError, TypeError, ValueError):
        return None
