"""
Evaluator: runs access detection, PR statistics and scoring for one applicant or a batch,
and optionally records the verdict in the history store.
"""
import logging
from dataclasses import asdict
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional
from access.permissions import PermissionResolver
from ingest.github import NotFound, parse_repo_url
from ingest.stats import collect_contribution_stats
from normalize.models import ContributorStats, GitHubUser, Repository
from scoring.criteria import AnalysisResult, CriteriaAnalyzer, Status
from storage.history import AnalysisRecord, HistoricalAnalysis, HistoryStore, with_notes

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4
NO_REPOSITORIES_ERROR = 'No repositories could be analyzed'


class RepositoryEvaluation:
    """Evidence and verdict for one submitted repository."""

    def __init__(self, url: str, repository: Repository, stats: ContributorStats, has_write_access: bool, analysis: AnalysisResult):
        self.url = url
        self.repository = repository
        self.stats = stats
        self.has_write_access = has_write_access
        self.analysis = analysis

    def to_dict(self) -> Dict[str, Any]:
        return {
            'url': self.url,
            'repository': {
                'full_name': self.repository.full_name,
                'html_url': self.repository.html_url,
                'stargazers_count': self.repository.stargazers_count,
            },
            'has_write_access': self.has_write_access,
            'stats': self.stats.to_dict(),
            'analysis': self.analysis.to_dict(),
        }


class ApplicantEvaluation:
    """Outcome of evaluating one applicant: status is 'completed' or 'error'."""

    def __init__(self, username: str, repositories: List[str], notes: Optional[str] = None):
        self.username = username
        self.repositories = list(repositories)
        self.notes = notes
        self.user: Optional[GitHubUser] = None
        self.repository_evaluations: List[RepositoryEvaluation] = []
        self.analysis: Optional[AnalysisResult] = None
        self.history: Optional[HistoricalAnalysis] = None
        self.record: Optional[AnalysisRecord] = None
        self.status = 'pending'
        self.error: Optional[str] = None

    @property
    def overall_status(self) -> Optional[Status]:
        return self.analysis.overall_status if self.analysis else None

    def to_dict(self) -> Dict[str, Any]:
        history = None
        if self.history:
            history = {
                'is_reapplication': self.history.is_reapplication,
                'application_type': self.history.current_analysis.application_type,
                'days_since_last_application': self.history.days_since_last_application,
                'status_change': self.history.status_change,
                'trends': asdict(self.history.trends),
                'previous_analyses': [r.to_dict() for r in self.history.previous_analyses],
            }
        return {
            'username': self.username,
            'repositories': self.repositories,
            'notes': self.notes,
            'status': self.status,
            'error': self.error,
            'user': vars(self.user).copy() if self.user else None,
            'analyses': [r.to_dict() for r in self.repository_evaluations],
            'aggregated_analysis': self.analysis.to_dict() if self.analysis else None,
            'history': history,
            'record_id': self.record.id if self.record else None,
        }


def evaluate_repository(client, analyzer: CriteriaAnalyzer, resolver: PermissionResolver, url: str, username: str) -> RepositoryEvaluation:
    """Evaluate a single repository URL. Raises NotFound for unparsable URLs or unknown repositories."""
    parsed = parse_repo_url(url)
    if not parsed:
        raise NotFound(f"Not a GitHub repository URL: {url}", 404)
    owner, repo = parsed
    repository = client.get_repository(owner, repo)
    has_write_access = resolver.has_write_access(owner, repo, username)
    stats = collect_contribution_stats(client, owner, repo, username, days=analyzer.requirements.days)
    analysis = analyzer.score_repository(repository, stats, has_write_access)
    logger.info("%s on %s/%s: %s", username, owner, repo, analysis.overall_status.value)
    return RepositoryEvaluation(url, repository, stats, has_write_access, analysis)


def _evaluate_repositories(client, analyzer, resolver, urls: List[str], username: str, max_workers: int) -> List[RepositoryEvaluation]:
    def _safe(url):
        try:
            return evaluate_repository(client, analyzer, resolver, url, username)
        except Exception as exc:
            logger.warning("Skipping repository %s for %s: %s", url, username, exc)
            return None

    if not urls:
        return []
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(urls)))) as pool:
        results = list(pool.map(_safe, urls))
    return [r for r in results if r is not None]


def evaluate_applicant(
    client,
    username: str,
    repositories: List[str],
    analyzer: Optional[CriteriaAnalyzer] = None,
    store: Optional[HistoryStore] = None,
    save: bool = False,
    notes: Optional[str] = None,
    max_workers: int = DEFAULT_MAX_WORKERS,
) -> ApplicantEvaluation:
    """
    Evaluate one applicant against the rubric.

    Parameters:
        client: GitHubClient (or any object with the same methods).
        username (str): GitHub login of the applicant.
        repositories (list): repository URLs as submitted.
        analyzer (CriteriaAnalyzer): rubric to score against (defaults apply when omitted).
        store (HistoryStore): when given, the verdict is compared with the applicant's history.
        save (bool): append the verdict to the store.
        notes (str): free text stored with the record.

    Returns:
        ApplicantEvaluation: status 'completed' with an aggregated analysis, or 'error'.
        An unknown user raises NotFound; storage failures propagate.
    """
    analyzer = analyzer or CriteriaAnalyzer()
    resolver = PermissionResolver(client, days=analyzer.requirements.days)
    evaluation = ApplicantEvaluation(username, repositories, notes)
    evaluation.status = 'analyzing'

    evaluation.user = client.get_user(username)
    evaluation.repository_evaluations = _evaluate_repositories(client, analyzer, resolver, repositories, username, max_workers)

    if not evaluation.repository_evaluations:
        evaluation.status = 'error'
        evaluation.error = NO_REPOSITORIES_ERROR
        logger.info("%s: %s", username, NO_REPOSITORIES_ERROR)
        return evaluation

    evaluation.analysis = analyzer.aggregate(r.analysis for r in evaluation.repository_evaluations)
    evaluation.status = 'completed'

    if store is not None:
        evaluation.history = store.compute_historical_analysis(username, repositories, evaluation.analysis)
        if save:
            evaluation.record = store.append(with_notes(evaluation.history.current_analysis, notes))
    return evaluation


def evaluate_batch(
    client,
    applicants: List[Dict[str, Any]],
    analyzer: Optional[CriteriaAnalyzer] = None,
    store: Optional[HistoryStore] = None,
    save: bool = True,
    max_workers: int = DEFAULT_MAX_WORKERS,
) -> List[ApplicantEvaluation]:
    """Evaluate applicants ({'username', 'repositories', 'notes'}) concurrently; one failure never affects the others."""
    analyzer = analyzer or CriteriaAnalyzer()

    # applicants share the max_workers budget; repositories fan out only for a lone applicant
    repo_workers = max_workers if len(applicants) == 1 else 1

    def _one(applicant: Dict[str, Any]) -> ApplicantEvaluation:
        username = applicant.get('username') or ''
        repos = applicant.get('repositories') or []
        notes = applicant.get('notes')
        try:
            return evaluate_applicant(client, username, repos, analyzer=analyzer, store=store, save=save, notes=notes, max_workers=repo_workers)
        except Exception as exc:
            logger.warning("Failed to evaluate applicant %s: %s", username, exc)
            failed = ApplicantEvaluation(username, repos, notes)
            failed.status = 'error'
            failed.error = str(exc) or exc.__class__.__name__
            return failed

    if not applicants:
        return []
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(applicants)))) as pool:
        return list(pool.map(_one, applicants))


def summarize_batch(evaluations: List[ApplicantEvaluation]) -> Dict[str, int]:
    return {
        'total': len(evaluations),
        'completed': sum(1 for e in evaluations if e.status == 'completed'),
        'errors': sum(1 for e in evaluations if e.status == 'error'),
        'exceeds': sum(1 for e in evaluations if e.overall_status is Status.EXCEEDS),
        'meets': sum(1 for e in evaluations if e.overall_status is Status.MEETS),
        'falls_short': sum(1 for e in evaluations if e.overall_status is Status.FALLS_SHORT),
    }
