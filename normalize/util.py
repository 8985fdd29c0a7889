"""
Normalization utility helpers.
Small helpers to turn raw GitHub REST payloads into normalize.models entities.
"""
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from normalize.models import GitHubUser, Repository, PullRequest


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp (GitHub uses a trailing 'Z') into an aware UTC datetime."""
    if not value:
        return None
    dt = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(value: datetime) -> str:
    """Inverse of parse_timestamp: UTC ISO 8601 with a 'Z' suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace('+00:00', 'Z')


def _login(raw: Any) -> Optional[str]:
    if not isinstance(raw, dict):
        return None
    return raw.get('login') or None


def normalize_user(raw: Dict[str, Any]) -> GitHubUser:
    """Create a GitHubUser from a /users/{username} payload."""
    return GitHubUser(
        login=raw.get('login') or '',
        name=raw.get('name'),
        avatar_url=raw.get('avatar_url'),
        public_repos=int(raw.get('public_repos') or 0),
    )


def normalize_repository(raw: Dict[str, Any]) -> Repository:
    """Create a Repository from a /repos/{owner}/{repo} payload."""
    full_name = raw.get('full_name') or ''
    return Repository(
        name=raw.get('name') or '',
        full_name=full_name,
        stargazers_count=int(raw.get('stargazers_count') or 0),
        html_url=raw.get('html_url') or '',
        owner=_login(raw.get('owner')),
        permissions=raw.get('permissions'),
    )


def normalize_pull_request(raw: Dict[str, Any]) -> PullRequest:
    """Create a PullRequest from one element of the pulls listing.
    A deleted author account comes back as user=null and yields author_login=None.
    """
    return PullRequest(
        number=int(raw.get('number') or 0),
        title=raw.get('title') or '',
        author_login=_login(raw.get('user')),
        created_at=parse_timestamp(raw.get('created_at')),
        html_url=raw.get('html_url') or '',
        merged_at=parse_timestamp(raw.get('merged_at')),
        merged_by_login=_login(raw.get('merged_by')),
    )
