"""
Normalized GitHub entities consumed by the eligibility engine.
"""

from datetime import datetime
from typing import List, Optional, Set


class GitHubUser:
    """
    Normalized applicant profile.
    """
    def __init__(self, login: str, name: Optional[str] = None, avatar_url: Optional[str] = None, public_repos: int = 0):
        self.login = login
        self.name = name
        self.avatar_url = avatar_url
        self.public_repos = public_repos


class Repository:
    """
    Normalized repository metadata.
    """
    def __init__(self, name: str, full_name: str, stargazers_count: int, html_url: str, owner: Optional[str] = None, permissions: Optional[dict] = None):
        self.name = name
        self.full_name = full_name
        self.stargazers_count = stargazers_count
        self.html_url = html_url
        self.owner = owner or (full_name.split('/')[0] if '/' in full_name else '')
        self.permissions = permissions  # permissions of the calling token, not of the applicant


class PullRequest:
    """
    Normalized pull request as returned by the closed-PR listing.
    """
    def __init__(self, number: int, title: str, author_login: Optional[str], created_at: Optional[datetime], html_url: str = '', merged_at: Optional[datetime] = None, merged_by_login: Optional[str] = None):
        self.number = number
        self.title = title
        self.author_login = author_login
        self.created_at = created_at
        self.html_url = html_url
        self.merged_at = merged_at
        self.merged_by_login = merged_by_login

    def __repr__(self):
        return f"PullRequest(number={self.number!r}, author_login={self.author_login!r}, merged_at={self.merged_at!r})"


class ContributorStats:
    """
    Pull-request activity for one repository inside the scoring window.
    """
    def __init__(self, total_merged_prs: int, user_merged_prs: int, external_contributors: Set[str], recent_prs: List[PullRequest]):
        self.total_merged_prs = total_merged_prs
        self.user_merged_prs = user_merged_prs
        self.external_contributors = external_contributors
        self.recent_prs = recent_prs

    @classmethod
    def empty(cls) -> 'ContributorStats':
        return cls(0, 0, set(), [])

    def to_dict(self) -> dict:
        return {
            'total_merged_prs': self.total_merged_prs,
            'user_merged_prs': self.user_merged_prs,
            'external_contributors': sorted(self.external_contributors),
            'recent_prs': [
                {
                    'number': pr.number,
                    'title': pr.title,
                    'author': pr.author_login,
                    'merged_at': pr.merged_at.isoformat() if pr.merged_at else None,
                    'html_url': pr.html_url,
                }
                for pr in self.recent_prs
            ],
        }
