"""
Append-only CSV history of eligibility verdicts.

One record per application, header row first. Records are never updated in place;
reading decodes the whole file and skips anything that does not decode, so a
truncated or hand-edited line never hides the rest of the history.
"""

import csv
import io
import os
import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Union

from normalize.util import parse_timestamp, format_timestamp
from scoring.criteria import AnalysisResult, Criterion, Status

logger = logging.getLogger(__name__)

REPOSITORY_SEPARATOR = ';'
APPLICATION_TYPES = ('initial', 'renewal')
CREDIT_RECOMMENDATIONS = {Status.EXCEEDS: 500, Status.MEETS: 300, Status.FALLS_SHORT: 0}

# column prefix for each rubric dimension, in storage order
SNAPSHOT_COLUMNS = (
    ('repository_stars', 'repositoryStars'),
    ('write_access', 'writeAccess'),
    ('total_merged_prs', 'totalMergedPRs'),
    ('external_contributors', 'externalContributors'),
    ('user_merged_prs', 'userMergedPRs'),
)

HEADER = (
    ['id', 'timestamp', 'username', 'repositories', 'applicationType', 'overallStatus', 'creditRecommendation']
    + [f"{prefix}_{part}" for _, prefix in SNAPSHOT_COLUMNS for part in ('status', 'actual', 'percentage')]
    + ['notes']
)

_path_locks: Dict[str, threading.Lock] = {}
_path_locks_guard = threading.Lock()


def _lock_for(path: str) -> threading.Lock:
    key = os.path.abspath(path)
    with _path_locks_guard:
        return _path_locks.setdefault(key, threading.Lock())


class MalformedRecordError(ValueError):
    """A stored line could not be decoded into an AnalysisRecord."""


@dataclass(frozen=True)
class CriterionSnapshot:
    status: Status
    actual: Union[int, bool]
    percentage: int


@dataclass(frozen=True)
class CriteriaSnapshot:
    repository_stars: CriterionSnapshot
    write_access: CriterionSnapshot
    total_merged_prs: CriterionSnapshot
    external_contributors: CriterionSnapshot
    user_merged_prs: CriterionSnapshot

    @classmethod
    def from_analysis(cls, result: AnalysisResult) -> 'CriteriaSnapshot':
        values = {}
        for criterion in Criterion:
            c = result.get(criterion)
            actual = bool(c.actual) if criterion is Criterion.WRITE_ACCESS else c.actual
            values[criterion.value] = CriterionSnapshot(status=c.status, actual=actual, percentage=c.percentage)
        return cls(**values)


@dataclass(frozen=True)
class AnalysisRecord:
    id: str
    timestamp: datetime
    username: str
    repositories: List[str]
    application_type: str
    overall_status: Status
    credit_recommendation: int
    criteria_results: CriteriaSnapshot
    notes: Optional[str] = None

    def to_dict(self) -> Dict:
        snapshot = {}
        for attr, _ in SNAPSHOT_COLUMNS:
            s = getattr(self.criteria_results, attr)
            snapshot[attr] = {'status': s.status.value, 'actual': s.actual, 'percentage': s.percentage}
        return {
            'id': self.id,
            'timestamp': format_timestamp(self.timestamp),
            'username': self.username,
            'repositories': list(self.repositories),
            'application_type': self.application_type,
            'overall_status': self.overall_status.value,
            'credit_recommendation': self.credit_recommendation,
            'criteria_results': snapshot,
            'notes': self.notes,
        }


@dataclass(frozen=True)
class Trends:
    stars: str = 'same'
    total_prs: str = 'same'
    user_prs: str = 'same'
    contributors: str = 'same'


@dataclass(frozen=True)
class HistoricalAnalysis:
    current_analysis: AnalysisRecord
    previous_analyses: List[AnalysisRecord]
    is_reapplication: bool
    days_since_last_application: Optional[int] = None
    status_change: Optional[str] = None
    trends: Trends = field(default_factory=Trends)


def credit_recommendation(status: Status) -> int:
    return CREDIT_RECOMMENDATIONS[Status(status)]


def create_record(
    username: str,
    repositories: List[str],
    result: AnalysisResult,
    application_type: str = 'initial',
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> AnalysisRecord:
    if application_type not in APPLICATION_TYPES:
        raise ValueError(f"Unknown application type {application_type!r}")
    timestamp = now or datetime.now(timezone.utc)
    return AnalysisRecord(
        id=f"{username}_{int(timestamp.timestamp() * 1000)}",
        timestamp=timestamp,
        username=username,
        repositories=list(repositories),
        application_type=application_type,
        overall_status=result.overall_status,
        credit_recommendation=credit_recommendation(result.overall_status),
        criteria_results=CriteriaSnapshot.from_analysis(result),
        notes=notes or None,
    )


def _format_actual(value: Union[int, bool]) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


def encode_record(record: AnalysisRecord) -> str:
    """Encode a record as one CSV row (terminated by a newline; quoted fields may span lines)."""
    row = [
        record.id,
        format_timestamp(record.timestamp),
        record.username,
        REPOSITORY_SEPARATOR.join(record.repositories),
        record.application_type,
        record.overall_status.value,
        str(record.credit_recommendation),
    ]
    for attr, _ in SNAPSHOT_COLUMNS:
        s = getattr(record.criteria_results, attr)
        row.extend([s.status.value, _format_actual(s.actual), str(s.percentage)])
    row.append(record.notes or '')
    buf = io.StringIO()
    csv.writer(buf, lineterminator='\n').writerow(row)
    return buf.getvalue()


def _parse_int(value: str, column: str) -> int:
    try:
        return int(value)
    except ValueError:
        try:
            as_float = float(value)
        except ValueError:
            raise MalformedRecordError(f"Column {column} is not a number: {value!r}")
        if not as_float.is_integer():
            raise MalformedRecordError(f"Column {column} is not a whole number: {value!r}")
        return int(as_float)


def _parse_bool(value: str, column: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ('true', '1'):
        return True
    if lowered in ('false', '0'):
        return False
    raise MalformedRecordError(f"Column {column} is not a boolean: {value!r}")


def _parse_status(value: str, column: str) -> Status:
    try:
        return Status(value)
    except ValueError:
        raise MalformedRecordError(f"Column {column} has unknown status {value!r}")


def decode_row(row: List[str]) -> AnalysisRecord:
    """Decode one CSV row. Raises MalformedRecordError on any structural or value problem."""
    if len(row) != len(HEADER):
        raise MalformedRecordError(f"Expected {len(HEADER)} columns, got {len(row)}")
    try:
        timestamp = parse_timestamp(row[1])
    except ValueError:
        raise MalformedRecordError(f"Unparsable timestamp {row[1]!r}")
    if timestamp is None or not row[0] or not row[2]:
        raise MalformedRecordError("Missing id, timestamp or username")
    if row[4] not in APPLICATION_TYPES:
        raise MalformedRecordError(f"Unknown application type {row[4]!r}")

    snapshots = {}
    for i, (attr, prefix) in enumerate(SNAPSHOT_COLUMNS):
        base = 7 + i * 3
        if attr == 'write_access':
            actual = _parse_bool(row[base + 1], f"{prefix}_actual")
        else:
            actual = _parse_int(row[base + 1], f"{prefix}_actual")
        snapshots[attr] = CriterionSnapshot(
            status=_parse_status(row[base], f"{prefix}_status"),
            actual=actual,
            percentage=_parse_int(row[base + 2], f"{prefix}_percentage"),
        )

    return AnalysisRecord(
        id=row[0],
        timestamp=timestamp,
        username=row[2],
        repositories=[r for r in row[3].split(REPOSITORY_SEPARATOR) if r],
        application_type=row[4],
        overall_status=_parse_status(row[5], 'overallStatus'),
        credit_recommendation=_parse_int(row[6], 'creditRecommendation'),
        criteria_results=CriteriaSnapshot(**snapshots),
        notes=row[22] or None,
    )


def compare_trend(current: Union[int, float, bool], previous: Union[int, float, bool]) -> str:
    current_val = int(current) if isinstance(current, bool) else current
    previous_val = int(previous) if isinstance(previous, bool) else previous
    if current_val > previous_val:
        return 'up'
    if current_val < previous_val:
        return 'down'
    return 'same'


def compare_status(current: Status, previous: Status) -> str:
    if current.rank > previous.rank:
        return 'improved'
    if current.rank < previous.rank:
        return 'declined'
    return 'same'


class HistoryStore:
    """CSV-backed, append-only store of AnalysisRecords.

    The file is opened and closed for every operation. Appends from threads of this
    process are serialized per file path; separate processes writing the same file
    are not coordinated.
    """

    def __init__(self, path: str):
        self.path = path

    def _ensure_file(self):
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        if not os.path.exists(self.path) or os.path.getsize(self.path) == 0:
            with open(self.path, 'w', encoding='utf-8', newline='') as fh:
                csv.writer(fh, lineterminator='\n').writerow(HEADER)

    def _ends_with_newline(self) -> bool:
        with open(self.path, 'rb') as fh:
            fh.seek(-1, os.SEEK_END)
            return fh.read(1) == b'\n'

    def append(self, record: AnalysisRecord) -> AnalysisRecord:
        line = encode_record(record)
        with _lock_for(self.path):
            self._ensure_file()
            if not self._ends_with_newline():
                # an interrupted append left a partial line; keep it off this record
                line = '\n' + line
            with open(self.path, 'a', encoding='utf-8', newline='') as fh:
                fh.write(line)
        logger.info("Stored analysis %s (%s) for %s", record.id, record.overall_status.value, record.username)
        return record

    def save_analysis(
        self,
        username: str,
        repositories: List[str],
        result: AnalysisResult,
        application_type: str = 'initial',
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> AnalysisRecord:
        return self.append(create_record(username, repositories, result, application_type, notes, now))

    def _read_records(self) -> List[AnalysisRecord]:
        """Decode every stored record, skipping the ones that do not decode.

        A record runs over physical lines until its quotes balance, so notes with
        embedded newlines survive. When a record cannot be decoded, or its quotes never
        balance, only its first line is dropped and reading resumes on the next line.
        """
        if not os.path.exists(self.path):
            return []
        with open(self.path, 'r', encoding='utf-8', newline='') as fh:
            lines = fh.readlines()

        records: List[AnalysisRecord] = []
        start = 0
        while start < len(lines):
            end = start
            quotes = lines[start].count('"')
            while quotes % 2 and end + 1 < len(lines):
                end += 1
                quotes += lines[end].count('"')
            text = ''.join(lines[start:end + 1])
            if not text.strip():
                start = end + 1
                continue
            try:
                if quotes % 2:
                    raise MalformedRecordError("unterminated quoted field")
                rows = list(csv.reader(io.StringIO(text)))
                if len(rows) != 1:
                    raise MalformedRecordError(f"Expected one record, got {len(rows)}")
                row = rows[0]
                if row == HEADER or (start == 0 and row and row[0] == 'id'):
                    start = end + 1
                    continue
                records.append(decode_row(row))
            except (csv.Error, MalformedRecordError) as exc:
                logger.warning("Skipping malformed record on line %d of %s: %s", start + 1, self.path, exc)
                start += 1
                continue
            start = end + 1
        return records

    def query_all(self) -> List[AnalysisRecord]:
        return sorted(self._read_records(), key=lambda r: r.timestamp, reverse=True)

    def query_by_identity(self, username: str) -> List[AnalysisRecord]:
        wanted = username.lower()
        return sorted((r for r in self._read_records() if r.username.lower() == wanted), key=lambda r: r.timestamp, reverse=True)

    def compute_historical_analysis(
        self,
        username: str,
        repositories: List[str],
        current_result: AnalysisResult,
        now: Optional[datetime] = None,
    ) -> HistoricalAnalysis:
        """Compare current_result with the applicant's most recent stored record. Nothing is written."""
        now = now or datetime.now(timezone.utc)
        previous = self.query_by_identity(username)
        is_reapplication = len(previous) > 0
        current = create_record(username, repositories, current_result, 'renewal' if is_reapplication else 'initial', now=now)

        if not is_reapplication:
            return HistoricalAnalysis(current_analysis=current, previous_analyses=previous, is_reapplication=False)

        last = previous[0]
        days_since = (now - last.timestamp).days
        cur, old = current.criteria_results, last.criteria_results
        trends = Trends(
            stars=compare_trend(cur.repository_stars.actual, old.repository_stars.actual),
            total_prs=compare_trend(cur.total_merged_prs.actual, old.total_merged_prs.actual),
            user_prs=compare_trend(cur.user_merged_prs.actual, old.user_merged_prs.actual),
            contributors=compare_trend(cur.external_contributors.actual, old.external_contributors.actual),
        )
        return HistoricalAnalysis(
            current_analysis=current,
            previous_analyses=previous,
            is_reapplication=True,
            days_since_last_application=days_since,
            status_change=compare_status(current.overall_status, last.overall_status),
            trends=trends,
        )


def with_notes(record: AnalysisRecord, notes: Optional[str]) -> AnalysisRecord:
    return replace(record, notes=notes or None)
