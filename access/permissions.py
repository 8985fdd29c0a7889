"""
Write/maintainer access detection.

The collaborator-permission endpoint is authoritative but needs push access on the
repository for the calling token, so it is only the first of several probes. Each probe
answers "is there evidence of write access?"; the first positive answer wins and a probe
that raises counts as no evidence.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

QUALIFYING_PERMISSIONS = frozenset({'admin', 'maintain', 'write'})
MERGE_SCAN_SIZE = 50
COMMIT_SCAN_SIZE = 10

# (owner, repo, username) -> bool
Probe = Callable[[str, str, str], bool]


class PermissionResolver:
    """Resolve whether a user has write access to a repository using an ordered probe chain."""

    def __init__(self, client, days: int = 90, probes: Optional[List[Tuple[str, Probe]]] = None, now: Optional[Callable[[], datetime]] = None):
        self.client = client
        self.days = days
        self._now = now or (lambda: datetime.now(timezone.utc))
        self.probes = probes if probes is not None else self.default_probes()

    def default_probes(self) -> List[Tuple[str, Probe]]:
        return [
            ('collaborator_permission', self.check_collaborator_permission),
            ('collaborator_listing', self.check_collaborator_listing),
            ('recent_merge_authority', self.check_recent_merge_authority),
            ('recent_commits', self.check_recent_commits),
        ]

    def check_collaborator_permission(self, owner: str, repo: str, username: str) -> bool:
        permission = self.client.get_collaborator_permission(owner, repo, username)
        logger.debug("Permission level for %s on %s/%s: %s", username, owner, repo, permission)
        return permission in QUALIFYING_PERMISSIONS

    def check_collaborator_listing(self, owner: str, repo: str, username: str) -> bool:
        wanted = username.lower()
        return any(login.lower() == wanted for login in self.client.list_collaborators(owner, repo))

    def check_recent_merge_authority(self, owner: str, repo: str, username: str) -> bool:
        wanted = username.lower()
        pulls = self.client.list_closed_pull_requests(owner, repo, page=1, per_page=MERGE_SCAN_SIZE)
        return any(pr.merged_at and pr.merged_by_login and pr.merged_by_login.lower() == wanted for pr in pulls)

    def check_recent_commits(self, owner: str, repo: str, username: str) -> bool:
        since = self._now() - timedelta(days=self.days)
        commits = self.client.list_commits_by_author(owner, repo, username, since, per_page=COMMIT_SCAN_SIZE)
        return len(commits) > 0

    def has_write_access(self, owner: str, repo: str, username: str) -> bool:
        for name, probe in self.probes:
            try:
                if probe(owner, repo, username):
                    logger.info("Write access for %s on %s/%s detected via %s", username, owner, repo, name)
                    return True
            except Exception as exc:
                logger.warning("Access probe %s failed for %s on %s/%s: %s", name, username, owner, repo, exc)
        logger.info("No write access detected for %s on %s/%s", username, owner, repo)
        return False


def resolve_write_access(client, owner: str, repo: str, username: str, days: int = 90) -> bool:
    """Convenience wrapper around PermissionResolver with the default probe chain."""
    return PermissionResolver(client, days=days).has_write_access(owner, repo, username)
