"""
Catalog Filter
Search, owner/stars filtering and deterministic sorting of cached catalog entries
"""

from appstore_models import KIND_PATCH, DEFAULT_SORT_MODE

BROWSER_PAGE_SIZE = 14

SORT_MODES = [
    {'id': 'stars_desc', 'summary': 'Sort: Stars (high → low)'},
    {'id': 'updated_desc', 'summary': 'Sort: Recently updated'},
    {'id': 'name_asc', 'summary': 'Sort: Name (A → Z)'},
    {'id': 'created_desc', 'summary': 'Sort: New'},
]
SORT_MODE_IDS = [mode['id'] for mode in SORT_MODES]


def normalized_lower(value):
    if value is None:
        return ''
    return str(value).strip().lower()


def extract_search_terms(search):
    """Split search text into lowercase terms.

    Returns:
        list - Terms, or None when the search is empty
    """
    terms = normalized_lower(search).split()
    return terms or None


def _all_terms_match(terms, haystacks):
    haystacks = [h for h in (normalized_lower(v) for v in haystacks) if h]
    if not haystacks:
        return False
    return all(any(term in hay for hay in haystacks) for term in terms)


def repo_matches_search(repo, search):
    """Every term must appear in the name, full name, description, language or a topic."""
    terms = extract_search_terms(search)
    if not terms:
        return True
    haystacks = [repo.full_name, repo.name, repo.description, repo.language]
    haystacks.extend(repo.topics)
    return _all_terms_match(terms, haystacks)


def patch_matches_search(patch, search):
    terms = extract_search_terms(search)
    if not terms:
        return True
    return _all_terms_match(terms, [patch.filename, patch.path])


def repo_has_matching_patch(repo, search, patch_lookup):
    """Check the patch files of a repository against the search.

    Args:
        repo: CatalogEntry - Patch repository
        search: str - Search text
        patch_lookup: callable - repo -> list of PatchFileEntry
    """
    if not extract_search_terms(search):
        return True
    if patch_lookup is None:
        return False
    return any(patch_matches_search(patch, search) for patch in patch_lookup(repo))


def matches_general_filters(repo, state):
    """Owner substring and minimum stars (inclusive) filters."""
    owner_filter = normalized_lower(state.owner)
    if owner_filter:
        owner_value = normalized_lower(repo.owner)
        if not owner_value or owner_filter not in owner_value:
            return False

    try:
        min_stars = int(state.min_stars or 0)
    except (TypeError, ValueError):
        min_stars = 0
    if min_stars > 0 and (repo.stars or 0) < min_stars:
        return False

    return True


def _remote_match(repo, state, remote_matches):
    if not remote_matches or not state.search_in_readme:
        return False
    return repo.key in remote_matches


def filter_entries(entries, state, patch_lookup=None, remote_matches=None):
    """Filter and sort catalog entries for the browser.

    Patch repositories also match when one of their files matches the search.

    Args:
        entries: list - CatalogEntry objects of one kind
        state: BrowserState - Active filters and sort mode
        patch_lookup: Optional callable - repo -> list of PatchFileEntry
        remote_matches: Optional set - full names matched by a remote README search

    Returns:
        list - Matching entries in sort order
    """
    search_active = extract_search_terms(state.search_text) is not None
    filtered = []
    for repo in entries:
        if not matches_general_filters(repo, state):
            continue
        if not search_active or repo_matches_search(repo, state.search_text):
            filtered.append(repo)
        elif _remote_match(repo, state, remote_matches):
            filtered.append(repo)
        elif repo.kind == KIND_PATCH and repo_has_matching_patch(repo, state.search_text, patch_lookup):
            filtered.append(repo)
    return sort_entries(filtered, state.sort_mode)


def _name_key(repo):
    return normalized_lower(repo.name or repo.full_name)


_REPO_SORT_KEYS = {
    'stars_desc': lambda r: (-(r.stars or 0), -r.pushed_ts, _name_key(r), r.remote_id),
    'updated_desc': lambda r: (-r.pushed_ts, -(r.stars or 0), _name_key(r), r.remote_id),
    'name_asc': lambda r: (_name_key(r), -(r.stars or 0), -r.pushed_ts, r.remote_id),
    'created_desc': lambda r: (-r.created_ts, -(r.stars or 0), _name_key(r), r.remote_id),
}


def _patch_name_key(row):
    return normalized_lower(row['patch'].filename)


def _patch_stars_key(row):
    return (-row['stars'], _name_key(row['repo']), _patch_name_key(row), row['patch'].path)


_PATCH_SORT_KEYS = {
    'stars_desc': _patch_stars_key,
    'updated_desc': lambda row: (-row['repo'].pushed_ts, -row['stars'], _patch_name_key(row), row['patch'].path),
    'name_asc': lambda row: (_name_key(row['repo']), _patch_name_key(row), row['patch'].path),
    'created_desc': lambda row: (-row['repo'].created_ts,) + _patch_stars_key(row),
}


def sort_entries(entries, mode=DEFAULT_SORT_MODE):
    """Sort repositories; unknown modes fall back to stars_desc"""
    key = _REPO_SORT_KEYS.get(mode, _REPO_SORT_KEYS[DEFAULT_SORT_MODE])
    return sorted(entries, key=key)


def sort_patch_rows(rows, mode=DEFAULT_SORT_MODE):
    key = _PATCH_SORT_KEYS.get(mode, _PATCH_SORT_KEYS[DEFAULT_SORT_MODE])
    return sorted(rows, key=key)


def collect_patch_rows(repos, state, patch_lookup, remote_matches=None):
    """Flatten patch repositories into one row per patch file.

    When the repository itself matches the search all its files are kept,
    otherwise only the files matching the search.

    Returns:
        list - Dicts with repo, patch, stars; sorted by state.sort_mode
    """
    search_active = extract_search_terms(state.search_text) is not None
    rows = []
    for repo in repos:
        repo_match = (not search_active
                      or repo_matches_search(repo, state.search_text)
                      or _remote_match(repo, state, remote_matches))
        for patch in patch_lookup(repo):
            if repo_match or patch_matches_search(patch, state.search_text):
                rows.append({'repo': repo, 'patch': patch, 'stars': repo.stars or 0})
    return sort_patch_rows(rows, state.sort_mode)


def get_sort_summary(mode):
    for option in SORT_MODES:
        if option['id'] == mode:
            return option['summary']
    return SORT_MODES[0]['summary']


def next_sort_mode(mode):
    """Cycle to the next sort mode"""
    if mode in SORT_MODE_IDS:
        return SORT_MODE_IDS[(SORT_MODE_IDS.index(mode) + 1) % len(SORT_MODE_IDS)]
    return SORT_MODE_IDS[0]


def get_owners(entries):
    """Unique owner logins, case-insensitively sorted"""
    owners = {repo.owner for repo in entries if repo.owner}
    return sorted(owners, key=str.lower)


def get_filter_summary(state):
    parts = []
    if state.search_text:
        parts.append(f'Search "{state.search_text}"')
    if state.owner:
        parts.append(f'Owner {state.owner}')
    if (state.min_stars or 0) > 0:
        parts.append(f'≥ {state.min_stars} stars')
    if not parts:
        return 'Filters: (none)'
    return 'Filters: ' + ', '.join(parts)


def paginate(items, page, page_size=BROWSER_PAGE_SIZE):
    """Slice one page out of a list, clamping the page number.

    Returns:
        tuple - (page_items, page, total_pages)
    """
    total_pages = max(1, (len(items) + page_size - 1) // page_size)
    page = min(max(1, int(page or 1)), total_pages)
    start = (page - 1) * page_size
    return items[start:start + page_size], page, total_pages
