"""
GitHub REST client used by the eligibility engine.
Every call goes through storage.cache.rate_limited_get (optional response cache, retries, timeout);
non-200 answers are translated into the GitHubError hierarchy below.
"""
import re
import logging
from datetime import datetime
from typing import List, Dict, Any, Optional, Tuple
from normalize.models import GitHubUser, Repository, PullRequest
from normalize.util import normalize_user, normalize_repository, normalize_pull_request, format_timestamp
from storage.cache import rate_limited_get, Cache

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
# matches https://github.com/<owner>/<repo>[.git][/...]
REPO_URL_RE = re.compile(r'github\.com[/:]([^/\s]+)/([^/\s#?]+)')


class GitHubError(Exception):
    """Base class for failed GitHub calls; status 0 means no HTTP answer was obtained."""

    def __init__(self, message: str, status: int = 0):
        super().__init__(message)
        self.status = status


class NotFound(GitHubError):
    """Unknown user or repository (HTTP 404)."""


class Forbidden(GitHubError):
    """The token may not ask this question (HTTP 401/403)."""


class UpstreamUnavailable(GitHubError):
    """Network error, timeout, rate limit or server error that survived retries."""


def _error_for_status(status: int, url: str, body: Any) -> GitHubError:
    detail = body.get('message') if isinstance(body, dict) else body
    message = f"GET {url} failed with status {status}: {detail}"
    if status == 404:
        return NotFound(message, status)
    if status in (401, 403):
        return Forbidden(message, status)
    return UpstreamUnavailable(message, status)


def parse_repo_url(url: str) -> Optional[Tuple[str, str]]:
    """Return (owner, repo) for a github.com repository URL, or None when the URL does not name one."""
    match = REPO_URL_RE.search((url or '').strip())
    if not match:
        return None
    owner, repo = match.group(1), match.group(2)
    if repo.endswith('.git'):
        repo = repo[:-4]
    if not owner or not repo:
        return None
    return owner, repo


class GitHubClient:
    """Simple GitHub client covering the user, repository, pull request, collaborator and commit endpoints."""

    def __init__(
        self,
        token: Optional[str],
        base_url: str = None,
        cache: Optional[Cache] = None,
        cache_max_age: Optional[float] = 900.0,
        timeout: Optional[float] = None,
    ):
        self.token = token
        self.base_url = (base_url or GITHUB_API_URL).rstrip('/')
        self.headers = {"Accept": "application/vnd.github+json"}
        if self.token:
            self.headers["Authorization"] = f"Bearer {self.token}"
        self.cache = cache
        self.cache_max_age = cache_max_age
        self.timeout = timeout

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None, cache_key: Optional[str] = None) -> Any:
        url = f"{self.base_url}{path}"
        res = rate_limited_get(
            url,
            headers=self.headers,
            params=params or {},
            cache=self.cache,
            cache_key=cache_key if self.cache else None,
            max_age=self.cache_max_age,
            timeout=self.timeout,
        )
        status = res.get('status', 0)
        if status != 200:
            if res.get('exhausted_retries'):
                # a 403 that was still rate limited after every retry is not a permission answer
                raise UpstreamUnavailable(f"GET {url} still rate limited or unavailable (status {status})", status)
            raise _error_for_status(status, url, res.get('response'))
        return res.get('response')

    def get_user(self, username: str) -> GitHubUser:
        data = self._get(f"/users/{username}", cache_key=f"github:user:{username.lower()}")
        return normalize_user(data)

    def get_repository(self, owner: str, repo: str) -> Repository:
        data = self._get(f"/repos/{owner}/{repo}", cache_key=f"github:repo:{owner}/{repo}".lower())
        return normalize_repository(data)

    def list_closed_pull_requests(self, owner: str, repo: str, page: int = 1, per_page: int = 100) -> List[PullRequest]:
        """One page of closed pull requests, most recently updated first."""
        params = {"state": "closed", "sort": "updated", "direction": "desc", "page": page, "per_page": per_page}
        key = f"github:pulls:{owner}/{repo}:closed:page:{page}:per:{per_page}".lower()
        data = self._get(f"/repos/{owner}/{repo}/pulls", params=params, cache_key=key)
        return [normalize_pull_request(item) for item in data or []]

    def get_collaborator_permission(self, owner: str, repo: str, username: str) -> str:
        """Return one of admin/maintain/write/triage/read (or none).
        role_name carries maintain and triage, which the legacy permission field folds into write/read.
        """
        data = self._get(f"/repos/{owner}/{repo}/collaborators/{username}/permission")
        return (data.get('role_name') or data.get('permission') or 'none').lower()

    def list_collaborators(self, owner: str, repo: str, per_page: int = 100) -> List[str]:
        data = self._get(f"/repos/{owner}/{repo}/collaborators", params={"per_page": per_page})
        return [c.get('login') for c in data or [] if c.get('login')]

    def list_commits_by_author(self, owner: str, repo: str, username: str, since: datetime, per_page: int = 10) -> List[Dict[str, Any]]:
        params = {"author": username, "since": format_timestamp(since), "per_page": per_page}
        return list(self._get(f"/repos/{owner}/{repo}/commits", params=params) or [])
