"""Test catalog search, filters, sorting and paging."""

import random

import pytest

from appstore_models import BrowserState, PatchFileEntry, KIND_PATCH
from catalog_filter import (SORT_MODE_IDS, filter_entries, sort_entries, collect_patch_rows, paginate,
                            get_filter_summary, get_sort_summary, next_sort_mode, get_owners)


@pytest.fixture
def entries(make_entry):
    return [
        make_entry(1, 'readerfont.koplugin', owner='alice', stars=12, description='Font switcher',
                   pushed_at='2024-05-01T00:00:00Z', created_at='2022-01-01T00:00:00Z'),
        make_entry(2, 'calendar.koplugin', owner='Bob', stars=40, description='Reading calendar',
                   pushed_at='2024-01-01T00:00:00Z', created_at='2023-06-01T00:00:00Z',
                   topics=['statistics']),
        make_entry(3, 'zen.koplugin', owner='carol', stars=12, description='Minimal UI',
                   pushed_at='2024-05-01T00:00:00Z', created_at='2024-02-01T00:00:00Z'),
        make_entry(4, 'Annotations.koplugin', owner='alice', stars=0, description='',
                   pushed_at='2023-01-01T00:00:00Z', created_at='2021-01-01T00:00:00Z'),
    ]


def test_search_substring_of_name_includes_entry(entries):
    for entry in entries:
        state = BrowserState(search_text=entry.name[1:5])
        assert entry in filter_entries([entry], state)


def test_min_stars_above_popularity_excludes_entry(entries):
    for entry in entries:
        assert filter_entries([entry], BrowserState(min_stars=entry.stars + 1)) == []
        assert filter_entries([entry], BrowserState(min_stars=entry.stars)) == [entry]


def test_all_terms_must_match(entries):
    state = BrowserState(search_text='reading statistics')
    assert [e.remote_id for e in filter_entries(entries, state)] == [2]
    state = BrowserState(search_text='reading fonts')
    assert filter_entries(entries, state) == []


def test_owner_filter_is_case_insensitive_substring(entries):
    state = BrowserState(owner='BO')
    assert [e.remote_id for e in filter_entries(entries, state)] == [2]


def test_remote_matches_only_apply_with_readme_search(entries):
    remote = {'carol/zen.koplugin'}
    state = BrowserState(search_text='dictionary')
    assert filter_entries(entries, state, remote_matches=remote) == []

    state.search_in_readme = True
    assert [e.remote_id for e in filter_entries(entries, state, remote_matches=remote)] == [3]


@pytest.mark.parametrize("mode, expected", [
    ('stars_desc', [2, 1, 3, 4]),
    ('updated_desc', [1, 3, 2, 4]),
    ('name_asc', [4, 2, 1, 3]),
    ('created_desc', [3, 2, 1, 4]),
])
def test_sort_modes(entries, mode, expected):
    assert [e.remote_id for e in sort_entries(entries, mode)] == expected


def test_unknown_sort_mode_falls_back_to_stars(entries):
    assert sort_entries(entries, 'bogus') == sort_entries(entries, 'stars_desc')


def test_sort_is_deterministic_including_ties(make_entry):
    """Full ties are broken by remote id, whatever the input order."""
    twins = [make_entry(i, 'same.koplugin', stars=5) for i in (9, 3, 7, 1)]
    for mode in SORT_MODE_IDS:
        first = [e.remote_id for e in sort_entries(twins, mode)]
        shuffled = twins[:]
        random.Random(4).shuffle(shuffled)
        assert [e.remote_id for e in sort_entries(shuffled, mode)] == first
        assert first == [1, 3, 7, 9]


def test_patch_repo_matches_through_its_files(make_entry):
    repo = make_entry(20, 'KOReader.patches', kind=KIND_PATCH, owner='dave', stars=3)
    files = {20: [PatchFileEntry(repo_id=20, path='2-dark-mode.lua', filename='2-dark-mode.lua')]}
    lookup = lambda r: files.get(r.remote_id, [])

    state = BrowserState(kind=KIND_PATCH, search_text='dark')
    assert filter_entries([repo], state, patch_lookup=lookup) == [repo]
    state.search_text = 'light'
    assert filter_entries([repo], state, patch_lookup=lookup) == []


def test_collect_patch_rows(make_entry):
    big = make_entry(20, 'KOReader.patches', kind=KIND_PATCH, owner='dave', stars=30)
    small = make_entry(21, 'my-patches', kind=KIND_PATCH, owner='erin', stars=2)
    files = {
        20: [PatchFileEntry(repo_id=20, path='2-b.lua', filename='2-b.lua'),
             PatchFileEntry(repo_id=20, path='1-a.lua', filename='1-a.lua')],
        21: [PatchFileEntry(repo_id=21, path='3-dark.lua', filename='3-dark.lua')],
    }
    lookup = lambda r: files[r.remote_id]

    rows = collect_patch_rows([big, small], BrowserState(kind=KIND_PATCH), lookup)
    assert [row['patch'].filename for row in rows] == ['1-a.lua', '2-b.lua', '3-dark.lua']

    rows = collect_patch_rows([big, small], BrowserState(kind=KIND_PATCH, search_text='dark'), lookup)
    assert [row['patch'].filename for row in rows] == ['3-dark.lua']

    rows = collect_patch_rows([big, small], BrowserState(kind=KIND_PATCH, search_text='erin'), lookup)
    assert [row['repo'].remote_id for row in rows] == [21]


def test_paginate_clamps_page():
    items = list(range(30))
    page_items, page, total_pages = paginate(items, 5, page_size=14)
    assert (page, total_pages) == (3, 3)
    assert page_items == [28, 29]
    assert paginate([], 1, page_size=14) == ([], 1, 1)
    assert paginate(items, 0, page_size=14)[1] == 1


def test_summaries():
    assert get_filter_summary(BrowserState()) == 'Filters: (none)'
    assert get_filter_summary(BrowserState(search_text='font', owner='alice', min_stars=3)) == \
        'Filters: Search "font", Owner alice, ≥ 3 stars'
    assert get_sort_summary('name_asc') == 'Sort: Name (A → Z)'
    assert get_sort_summary('bogus') == get_sort_summary('stars_desc')


def test_next_sort_mode_cycles():
    modes = ['stars_desc']
    for _ in range(len(SORT_MODE_IDS)):
        modes.append(next_sort_mode(modes[-1]))
    assert modes[:-1] == SORT_MODE_IDS
    assert modes[-1] == 'stars_desc'
    assert next_sort_mode('bogus') == 'stars_desc'


def test_get_owners(entries):
    assert get_owners(entries) == ['alice', 'Bob', 'carol']
