"""
Eligibility rubric scoring.
Turns repository metadata, pull-request stats and the write-access flag into per-criterion
verdicts, and aggregates verdicts across the repositories submitted by one applicant.
"""
import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Iterable, List, Sequence, Tuple, Union
from normalize.models import ContributorStats, Repository

EXCEEDS_FACTOR = 1.5
MIN_EXCEEDING_FOR_OVERALL = 2


class Status(str, Enum):
    EXCEEDS = 'exceeds'
    MEETS = 'meets'
    FALLS_SHORT = 'falls_short'

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {Status.FALLS_SHORT: 0, Status.MEETS: 1, Status.EXCEEDS: 2}


class Criterion(Enum):
    """Rubric dimensions in their fixed display order."""
    REPOSITORY_STARS = 'repository_stars'
    WRITE_ACCESS = 'write_access'
    TOTAL_MERGED_PRS = 'total_merged_prs'
    EXTERNAL_CONTRIBUTORS = 'external_contributors'
    USER_MERGED_PRS = 'user_merged_prs'


RUBRIC_ORDER: Tuple[Criterion, ...] = tuple(Criterion)


class MissingCriterionError(LookupError):
    """An AnalysisResult lacks one of the rubric dimensions."""


@dataclass(frozen=True)
class Requirements:
    min_stars: int = 100
    min_merged_prs: int = 20
    min_external_contributors: int = 2
    min_user_prs: int = 5
    days: int = 90

    def __post_init__(self):
        for name in ('min_stars', 'min_merged_prs', 'min_external_contributors', 'min_user_prs', 'days'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ValueError(f"Requirement {name} must be a positive number, got {value!r}")


DEFAULT_REQUIREMENTS = Requirements()


@dataclass(frozen=True)
class CriterionResult:
    criterion: Criterion
    name: str
    required: Union[int, float]
    actual: Union[int, float]
    status: Status
    percentage: int
    description: str


@dataclass(frozen=True)
class Summary:
    passed: int
    total: int
    score: int


@dataclass(frozen=True)
class AnalysisResult:
    overall_status: Status
    criteria: Tuple[CriterionResult, ...]
    summary: Summary

    def get(self, criterion: Criterion) -> CriterionResult:
        for c in self.criteria:
            if c.criterion is criterion:
                return c
        raise MissingCriterionError(f"Analysis result has no {criterion.value} criterion")

    def to_dict(self) -> Dict:
        return {
            'overall_status': self.overall_status.value,
            'criteria': [
                {
                    'criterion': c.criterion.value,
                    'name': c.name,
                    'required': c.required,
                    'actual': c.actual,
                    'status': c.status.value,
                    'percentage': c.percentage,
                    'description': c.description,
                }
                for c in self.criteria
            ],
            'summary': {'passed': self.summary.passed, 'total': self.summary.total, 'score': self.summary.score},
        }


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_status(actual: float, required: float) -> Status:
    if actual >= required * EXCEEDS_FACTOR:
        return Status.EXCEEDS
    if actual >= required:
        return Status.MEETS
    return Status.FALLS_SHORT


def calculate_percentage(actual: float, required: float) -> int:
    return round_half_up(actual / required * 100)


def _binary_status(actual: float) -> Status:
    return Status.MEETS if actual else Status.FALLS_SHORT


def summarize(criteria: Sequence[CriterionResult]) -> Tuple[Status, Summary]:
    """Apply the hard gate: any falls_short criterion fails the whole result."""
    total = len(criteria)
    passed = sum(1 for c in criteria if c.status is not Status.FALLS_SHORT)
    score = round_half_up(passed / total * 100) if total else 0
    if total and passed == total:
        exceeding = sum(1 for c in criteria if c.status is Status.EXCEEDS)
        overall = Status.EXCEEDS if exceeding >= MIN_EXCEEDING_FOR_OVERALL else Status.MEETS
    else:
        overall = Status.FALLS_SHORT
    return overall, Summary(passed=passed, total=total, score=score)


class CriteriaAnalyzer:
    """Scores repositories against a fixed Requirements rubric."""

    def __init__(self, requirements: Requirements = DEFAULT_REQUIREMENTS):
        self.requirements = requirements

    def _numeric(self, criterion: Criterion, name: str, actual: float, required: float, description: str) -> CriterionResult:
        return CriterionResult(
            criterion=criterion,
            name=name,
            required=required,
            actual=actual,
            status=calculate_status(actual, required),
            percentage=calculate_percentage(actual, required),
            description=description,
        )

    def _build_criteria(self, stars: int, has_write_access: bool, total_prs: int, contributors: int, user_prs: int) -> List[CriterionResult]:
        req = self.requirements
        access = 1 if has_write_access else 0
        return [
            self._numeric(
                Criterion.REPOSITORY_STARS, 'Repository Stars', stars, req.min_stars,
                f"Repository must have at least {req.min_stars} stars",
            ),
            CriterionResult(
                criterion=Criterion.WRITE_ACCESS,
                name='Maintainer/Write Access',
                required=1,
                actual=access,
                status=_binary_status(access),
                percentage=100 if access else 0,
                description='User must have maintainer or write access to the repository '
                            '(detected via collaborator status, merge activity, or recent commits)',
            ),
            self._numeric(
                Criterion.TOTAL_MERGED_PRS, f'Total Merged PRs ({req.days} days)', total_prs, req.min_merged_prs,
                f"Repository must have at least {req.min_merged_prs} merged PRs from all contributors in the last {req.days} days",
            ),
            self._numeric(
                Criterion.EXTERNAL_CONTRIBUTORS, 'External Contributors', contributors, req.min_external_contributors,
                f"Repository must have at least {req.min_external_contributors} distinct external contributors in the last {req.days} days",
            ),
            self._numeric(
                Criterion.USER_MERGED_PRS, f'User Merged PRs ({req.days} days)', user_prs, req.min_user_prs,
                f"User must have personally authored at least {req.min_user_prs} merged PRs in the last {req.days} days",
            ),
        ]

    def score_repository(self, repository: Repository, stats: ContributorStats, has_write_access: bool) -> AnalysisResult:
        criteria = self._build_criteria(
            stars=repository.stargazers_count,
            has_write_access=has_write_access,
            total_prs=stats.total_merged_prs,
            contributors=len(stats.external_contributors),
            user_prs=stats.user_merged_prs,
        )
        overall, summary = summarize(criteria)
        return AnalysisResult(overall_status=overall, criteria=tuple(criteria), summary=summary)

    def empty_result(self) -> AnalysisResult:
        criteria = self._build_criteria(0, False, 0, 0, 0)
        overall, summary = summarize(criteria)
        return AnalysisResult(overall_status=overall, criteria=tuple(criteria), summary=summary)

    def aggregate(self, results: Iterable[AnalysisResult]) -> AnalysisResult:
        """Combine per-repository results for one applicant.

        user_merged_prs is summed across repositories; every other criterion is taken
        from the repository with the highest actual value.
        """
        results = list(results)
        if not results:
            return self.empty_result()
        if len(results) == 1:
            return results[0]

        aggregated: List[CriterionResult] = []
        for criterion in RUBRIC_ORDER:
            per_repo = [r.get(criterion) for r in results]
            first = per_repo[0]
            if criterion is Criterion.USER_MERGED_PRS:
                actual = sum(c.actual for c in per_repo)
                suffix = ' (aggregated across all repositories)'
            else:
                best = first
                for current in per_repo[1:]:
                    if current.actual > best.actual:
                        best = current
                actual = best.actual
                first = best
                suffix = ' (best across all repositories)'
            if criterion is Criterion.WRITE_ACCESS:
                status = _binary_status(actual)
                percentage = 100 if actual else 0
            else:
                status = calculate_status(actual, first.required)
                percentage = calculate_percentage(actual, first.required)
            aggregated.append(replace(first, actual=actual, status=status, percentage=percentage, description=first.description + suffix))

        overall, summary = summarize(aggregated)
        return AnalysisResult(overall_status=overall, criteria=tuple(aggregated), summary=summary)
