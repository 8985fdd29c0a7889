"""
Windowed pull-request statistics for one repository.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Set
from normalize.models import ContributorStats, PullRequest

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100
# hard ceiling on upstream calls per repository
DEFAULT_MAX_PAGES = 5

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _same_login(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a) and bool(b) and a.lower() == b.lower()


def _sort_key(pr: PullRequest) -> datetime:
    return pr.merged_at or pr.created_at or _EPOCH


def collect_contribution_stats(
    client,
    owner: str,
    repo: str,
    username: str,
    days: int = 90,
    now: Optional[datetime] = None,
    per_page: int = DEFAULT_PAGE_SIZE,
    max_pages: int = DEFAULT_MAX_PAGES,
) -> ContributorStats:
    """Count merged pull requests in the trailing window and classify their authors.

    Pages are requested in order, newest-updated first. Paging stops when a page is short,
    when a merged pull request older than the window has been seen (the current page is
    still finished), or after max_pages. Any upstream failure yields empty stats.
    """
    now = now or datetime.now(timezone.utc)
    since = now - timedelta(days=days)

    total_merged = 0
    user_merged = 0
    external: Set[str] = set()
    recent: List[PullRequest] = []

    try:
        for page in range(1, max_pages + 1):
            prs = client.list_closed_pull_requests(owner, repo, page=page, per_page=per_page)
            reached_older = False
            for pr in prs:
                if pr.merged_at is None:
                    continue
                if pr.merged_at < since:
                    reached_older = True
                    continue
                if pr.merged_at > now:
                    continue
                total_merged += 1
                recent.append(pr)
                if _same_login(pr.author_login, username):
                    user_merged += 1
                elif pr.author_login and not _same_login(pr.author_login, owner):
                    external.add(pr.author_login)
            if reached_older:
                logger.debug("%s/%s: page %d reached pull requests merged before %s; stopping", owner, repo, page, since.date())
                break
            if len(prs) < per_page:
                break
        else:
            logger.debug("%s/%s: stopped at the %d page ceiling", owner, repo, max_pages)
    except Exception as exc:
        logger.warning("Failed to collect pull request stats for %s/%s: %s", owner, repo, exc)
        return ContributorStats.empty()

    recent.sort(key=_sort_key, reverse=True)
    return ContributorStats(
        total_merged_prs=total_merged,
        user_merged_prs=user_merged,
        external_contributors=external,
        recent_prs=recent,
    )
