"""
GitHub Client
Thin requests wrapper around the GitHub REST API and raw file host
"""

import logging
import os
from urllib.parse import quote

import requests

from appstore_errors import NotFoundError, NetworkError, RateLimitError, DecodeError

logger = logging.getLogger(__name__)

API_URL = "https://api.github.com"
RAW_URL = "https://raw.githubusercontent.com"
USER_AGENT = "AppStore-Manager"
DEFAULT_TIMEOUT = 10


def build_raw_url(owner, repo, branch, path):
    """Build a raw.githubusercontent.com download URL.

    Args:
        owner: str - Repository owner login
        repo: str - Repository name
        branch: Optional str - Branch or ref, 'HEAD' when missing
        path: str - File path inside the repository

    Returns:
        str - Download URL or None if owner/repo/path is missing
    """
    if not owner or not repo or not path:
        return None
    return f"{RAW_URL}/{owner}/{repo}/{branch or 'HEAD'}/{quote(path.lstrip('/'))}"


class GitHubClient:
    def __init__(self, settings=None, session=None, timeout=None):
        """Initialize the client.

        Args:
            settings: Optional AppStoreSettings - Source of token and timeout
            session: Optional requests.Session - Injected for tests
            timeout: Optional float - Per-request timeout in seconds
        """
        self.settings = settings
        self.session = session or requests.Session()
        if timeout is None:
            timeout = settings.get_request_timeout() if settings else DEFAULT_TIMEOUT
        self.timeout = timeout

    def _get_token(self):
        if self.settings is not None:
            return self.settings.get_github_token()
        token = os.environ.get('GITHUB_TOKEN')
        return token or None

    def has_auth_token(self):
        return bool(self._get_token())

    def _headers(self, accept):
        headers = {
            'Accept': accept,
            'User-Agent': USER_AGENT,
        }
        token = self._get_token()
        if token:
            headers['Authorization'] = f'token {token}'
        return headers

    def _request(self, url, params=None, accept='application/vnd.github+json'):
        """Perform a GET and map every failure onto the AppStore errors.

        Returns:
            requests.Response - Response with status 200
        """
        logger.debug("GitHub HTTP %s %s", url, params or '')
        try:
            response = self.session.get(url, params=params, headers=self._headers(accept), timeout=self.timeout)
        except requests.Timeout as e:
            raise NetworkError(f"Request timed out: {url}", url=url) from e
        except requests.RequestException as e:
            raise NetworkError(f"Request failed: {e}", url=url) from e

        status = response.status_code
        if status == 200:
            return response
        if status == 404:
            raise NotFoundError(f"HTTP 404: {url}", url=url)
        if status in (403, 429):
            message = ''
            try:
                message = str(response.json().get('message', ''))
            except (ValueError, AttributeError):
                pass
            if status == 429 or 'rate limit' in message.lower():
                logger.warning("GitHub API rate limit exceeded (%s)", url)
                raise RateLimitError(
                    'GitHub API rate limit exceeded. Please wait or configure a GitHub token in Settings.',
                    status_code=status, url=url)
        logger.warning("GitHub request error %s for %s", status, url)
        raise NetworkError(f"HTTP {status}", status_code=status, url=url)

    def _get_json(self, path, params=None):
        url = f"{API_URL}{path}"
        response = self._request(url, params=params)
        try:
            return response.json()
        except ValueError as e:
            logger.warning("GitHub decode error for %s: %s", url, e)
            raise DecodeError(f"Malformed JSON from {url}") from e

    def search_repositories(self, query, page=1, per_page=30, sort=None, order=None):
        """Run a repository search.

        Args:
            query: str - GitHub search query ('topic:x fork:true')
            page: int - 1-based page
            per_page: int - Page size (max 100)
            sort: Optional str - 'stars', 'updated', ...
            order: Optional str - 'asc' or 'desc'

        Returns:
            dict - Search payload with 'items' list
        """
        params = {'q': query, 'page': page, 'per_page': per_page}
        if sort:
            params['sort'] = sort
        if order:
            params['order'] = order
        payload = self._get_json('/search/repositories', params)
        if not isinstance(payload, dict) or not isinstance(payload.get('items', []), list):
            raise DecodeError("Search payload has no item list")
        return payload

    def fetch_repo_metadata(self, owner, repo):
        """Fetch repository metadata (pushed_at, created_at, default_branch, ...)."""
        payload = self._get_json(f"/repos/{owner}/{repo}")
        if not isinstance(payload, dict):
            raise DecodeError(f"Unexpected metadata payload for {owner}/{repo}")
        return payload

    def fetch_repo_tree(self, owner, repo, ref='HEAD'):
        """Fetch the recursive git tree of a ref."""
        payload = self._get_json(f"/repos/{owner}/{repo}/git/trees/{ref or 'HEAD'}", {'recursive': 1})
        if not isinstance(payload, dict) or not isinstance(payload.get('tree'), list):
            raise DecodeError(f"Unexpected tree payload for {owner}/{repo}@{ref}")
        if payload.get('truncated'):
            logger.warning("GitHub tree for %s/%s@%s is truncated", owner, repo, ref)
        return payload

    def fetch_file_tree(self, owner, repo, branch='HEAD'):
        """List every file (blob) of a branch.

        Returns:
            list - Dicts with path, filename, sha, size, branch, download_url
        """
        branch = branch or 'HEAD'
        tree = self.fetch_repo_tree(owner, repo, branch)
        files = []
        for node in tree['tree']:
            if not isinstance(node, dict) or node.get('type') != 'blob' or not node.get('path'):
                continue
            path = node['path']
            files.append({
                'path': path,
                'filename': path.rsplit('/', 1)[-1],
                'sha': node.get('sha'),
                'size': node.get('size') or 0,
                'branch': branch,
                'download_url': build_raw_url(owner, repo, branch, path),
            })
        return files

    def fetch_raw_file(self, owner, repo, branch, path):
        """Download one file from the raw host.

        Returns:
            bytes - File content
        """
        url = build_raw_url(owner, repo, branch, path)
        if not url:
            raise NotFoundError("Missing repository metadata for remote fetch.")
        return self._request(url, accept='text/plain').content

    def download(self, url):
        """Download an arbitrary URL (patch download_url) as bytes."""
        if not url:
            raise NotFoundError("Unable to determine download URL.")
        return self._request(url, accept='application/octet-stream').content

    def fetch_readme(self, owner, repo):
        """Download README.md of the default branch as text."""
        content = self.fetch_raw_file(owner, repo, 'HEAD', 'README.md')
        return content.decode('utf-8', errors='replace')
