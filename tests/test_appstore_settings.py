"""Test settings persistence and browser state normalization."""

from appstore_models import BrowserState
from appstore_settings import AppStoreSettings, DEFAULT_REQUEST_TIMEOUT, default_data_dir
from catalog_filter import SORT_MODE_IDS


def test_settings_round_trip(tmp_path):
    settings = AppStoreSettings(tmp_path)
    assert settings.set_setting('status_text', 'Cached 3 plugins.')

    reloaded = AppStoreSettings(tmp_path)
    assert reloaded.get_setting('status_text') == 'Cached 3 plugins.'
    assert 'last_updated' in reloaded.get_all_settings()


def test_github_token_prefers_setting(tmp_path, monkeypatch):
    monkeypatch.setenv('GITHUB_TOKEN', 'env-token')
    settings = AppStoreSettings(tmp_path)
    assert settings.get_github_token() == 'env-token'

    settings.set_setting('github_token', 'settings-token')
    assert settings.get_github_token() == 'settings-token'


def test_placeholder_token_ignored(tmp_path, monkeypatch):
    monkeypatch.delenv('GITHUB_TOKEN', raising=False)
    settings = AppStoreSettings(tmp_path)
    settings.set_setting('github_token', 'your_github_token')
    assert settings.get_github_token() is None


def test_request_timeout_falls_back_to_default(tmp_path):
    settings = AppStoreSettings(tmp_path)
    assert settings.get_request_timeout() == DEFAULT_REQUEST_TIMEOUT
    settings.set_setting('request_timeout', 'soon')
    assert settings.get_request_timeout() == DEFAULT_REQUEST_TIMEOUT
    settings.set_setting('request_timeout', 3)
    assert settings.get_request_timeout() == 3


def test_data_dir_override(monkeypatch, tmp_path):
    monkeypatch.setenv('APPSTORE_DATA_DIR', str(tmp_path / 'store'))
    assert default_data_dir() == tmp_path / 'store'


def test_browser_state_defaults_when_missing(tmp_path):
    state = AppStoreSettings(tmp_path).load_browser_state(SORT_MODE_IDS)
    assert state == BrowserState()


def test_browser_state_round_trip(tmp_path):
    settings = AppStoreSettings(tmp_path)
    state = BrowserState(kind='patch', search_text='dark', owner='alice', min_stars=5, page=3,
                         scroll_offset={'x': 0, 'y': 120}, sort_mode='name_asc', search_in_readme=True)
    settings.save_browser_state(state)

    loaded = AppStoreSettings(tmp_path).load_browser_state(SORT_MODE_IDS)
    assert loaded.kind == 'patch'
    assert loaded.search_text == 'dark'
    assert loaded.min_stars == 5
    assert loaded.page == 3
    assert loaded.scroll_offset == {'x': 0.0, 'y': 120.0}
    assert loaded.sort_mode == 'name_asc'
    assert loaded.search_in_readme is True


def test_browser_state_normalizes_garbage(tmp_path):
    settings = AppStoreSettings(tmp_path)
    settings.set_setting('browser_state', {
        'kind': 'theme',
        'search_text': 42,
        'min_stars': 'lots',
        'page': -4,
        'scroll_offset': {'x': 'left'},
        'sort_mode': 'random',
        'search_in_readme': 'yes',
    })

    state = settings.load_browser_state(SORT_MODE_IDS)
    assert state.kind == 'plugin'
    assert state.search_text == ''
    assert state.min_stars == 0
    assert state.page == 1
    assert state.scroll_offset is None
    assert state.sort_mode == 'stars_desc'
    assert state.search_in_readme is False
