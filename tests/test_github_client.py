"""Test the GitHub client against a mocked requests session."""

from unittest.mock import MagicMock

import pytest
import requests

from appstore_errors import NotFoundError, NetworkError, RateLimitError, DecodeError
from github_client import GitHubClient, build_raw_url


def _response(status=200, payload=None, content=b'', json_error=False):
    response = MagicMock()
    response.status_code = status
    response.content = content
    if json_error:
        response.json.side_effect = ValueError("Expecting value")
    else:
        response.json.return_value = payload if payload is not None else {}
    return response


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def client(session, monkeypatch):
    monkeypatch.delenv('GITHUB_TOKEN', raising=False)
    return GitHubClient(session=session, timeout=5)


def test_build_raw_url():
    assert build_raw_url('alice', 'foo', None, '/a b/_meta.lua') == \
        'https://raw.githubusercontent.com/alice/foo/HEAD/a%20b/_meta.lua'
    assert build_raw_url('alice', None, 'main', 'x.lua') is None


def test_search_passes_query_and_timeout(client, session):
    session.get.return_value = _response(payload={'items': [{'id': 1}]})

    payload = client.search_repositories('topic:koreader-plugin fork:true', page=2, per_page=100,
                                         sort='stars', order='desc')

    assert payload['items'] == [{'id': 1}]
    args, kwargs = session.get.call_args
    assert args[0] == 'https://api.github.com/search/repositories'
    assert kwargs['params'] == {'q': 'topic:koreader-plugin fork:true', 'page': 2, 'per_page': 100,
                                'sort': 'stars', 'order': 'desc'}
    assert kwargs['timeout'] == 5
    assert 'Authorization' not in kwargs['headers']


def test_token_header_from_environment(session, monkeypatch):
    monkeypatch.setenv('GITHUB_TOKEN', 'abc123')
    session.get.return_value = _response(payload={'name': 'foo'})

    GitHubClient(session=session).fetch_repo_metadata('alice', 'foo')

    assert session.get.call_args.kwargs['headers']['Authorization'] == 'token abc123'


def test_not_found(client, session):
    session.get.return_value = _response(status=404)
    with pytest.raises(NotFoundError):
        client.fetch_raw_file('alice', 'foo', 'main', '_meta.lua')


def test_rate_limit(client, session):
    session.get.return_value = _response(status=403, payload={'message': 'API rate limit exceeded for 1.2.3.4'})
    with pytest.raises(RateLimitError) as excinfo:
        client.fetch_repo_metadata('alice', 'foo')
    assert excinfo.value.status_code == 403


def test_forbidden_without_rate_limit_is_network_error(client, session):
    session.get.return_value = _response(status=403, payload={'message': 'Resource not accessible'})
    with pytest.raises(NetworkError) as excinfo:
        client.fetch_repo_metadata('alice', 'foo')
    assert not isinstance(excinfo.value, RateLimitError)


def test_server_error(client, session):
    session.get.return_value = _response(status=502)
    with pytest.raises(NetworkError) as excinfo:
        client.fetch_repo_metadata('alice', 'foo')
    assert excinfo.value.status_code == 502


def test_timeout_maps_to_network_error(client, session):
    session.get.side_effect = requests.Timeout("read timed out")
    with pytest.raises(NetworkError):
        client.fetch_repo_metadata('alice', 'foo')


def test_malformed_json_is_decode_error(client, session):
    session.get.return_value = _response(json_error=True)
    with pytest.raises(DecodeError):
        client.fetch_repo_metadata('alice', 'foo')


def test_fetch_file_tree_lists_blobs(client, session):
    session.get.return_value = _response(payload={'tree': [
        {'path': 'patches', 'type': 'tree', 'sha': 't1'},
        {'path': 'patches/2-foo.lua', 'type': 'blob', 'sha': 'b1', 'size': 12},
        {'path': 'README.md', 'type': 'blob', 'sha': 'b2', 'size': 3},
    ]})

    files = client.fetch_file_tree('alice', 'KOReader.patches', 'main')

    assert [f['path'] for f in files] == ['patches/2-foo.lua', 'README.md']
    assert files[0]['filename'] == '2-foo.lua'
    assert files[0]['sha'] == 'b1'
    assert files[0]['download_url'] == \
        'https://raw.githubusercontent.com/alice/KOReader.patches/main/patches/2-foo.lua'
    assert session.get.call_args.args[0] == \
        'https://api.github.com/repos/alice/KOReader.patches/git/trees/main'


def test_fetch_readme_decodes_text(client, session):
    session.get.return_value = _response(content='# Foo ✓\n'.encode('utf-8'))
    assert client.fetch_readme('alice', 'foo') == '# Foo ✓\n'
