from datetime import datetime, timezone

import pytest

import evaluator
from evaluator import evaluate_applicant, evaluate_batch, summarize_batch, NO_REPOSITORIES_ERROR
from ingest.github import NotFound
from scoring.criteria import Status, CriteriaAnalyzer, Requirements
from storage.history import HistoryStore
from fakes import FakeGitHubClient, make_pr

WIDGETS = 'https://github.com/acme/widgets'
GADGETS = 'https://github.com/acme/gadgets.git'


@pytest.fixture
def client():
    now = datetime.now(timezone.utc)
    fake = FakeGitHubClient()
    fake.add_user('alice')
    fake.add_user('bob')
    own = [make_pr(i, 'alice', 0.5 + i, now=now) for i in range(8)]
    others = [make_pr(100 + i, ('bob', 'carol', 'dave')[i % 3], 2 + i, now=now) for i in range(17)]
    fake.add_repo('acme', 'widgets', 150, own + others)
    fake.add_repo('acme', 'gadgets', 40, [make_pr(200 + i, 'bob', 3, now=now) for i in range(3)])
    fake.permissions['acme/widgets:alice'] = 'maintain'
    return fake


@pytest.fixture
def store(tmp_path):
    return HistoryStore(str(tmp_path / 'analyses.csv'))


def test_exceeding_applicant(client):
    result = evaluate_applicant(client, 'alice', [WIDGETS])
    assert result.status == 'completed'
    assert result.overall_status is Status.EXCEEDS
    assert result.user.login == 'alice'
    [repo_eval] = result.repository_evaluations
    assert repo_eval.has_write_access is True
    assert repo_eval.stats.total_merged_prs == 25
    assert repo_eval.stats.user_merged_prs == 8
    assert repo_eval.stats.external_contributors == {'bob', 'carol', 'dave'}
    assert result.to_dict()['aggregated_analysis']['summary'] == {'passed': 5, 'total': 5, 'score': 100}


def test_unknown_user_raises(client):
    with pytest.raises(NotFound):
        evaluate_applicant(client, 'ghost', [WIDGETS])


def test_no_analyzable_repositories(client):
    result = evaluate_applicant(client, 'alice', ['https://example.com/not/github', 'https://github.com/acme/missing'])
    assert result.status == 'error'
    assert result.error == NO_REPOSITORIES_ERROR
    assert result.analysis is None


def test_failed_repository_is_skipped(client):
    result = evaluate_applicant(client, 'alice', ['https://github.com/acme/missing', WIDGETS, GADGETS])
    assert result.status == 'completed'
    assert [r.repository.full_name for r in result.repository_evaluations] == ['acme/widgets', 'acme/gadgets']


def test_rubric_window_is_used(client):
    analyzer = CriteriaAnalyzer(Requirements(days=5))
    result = evaluate_applicant(client, 'alice', [WIDGETS], analyzer=analyzer)
    assert result.repository_evaluations[0].stats.user_merged_prs == 5


def test_save_records_notes_and_detects_renewal(client, store):
    first = evaluate_applicant(client, 'alice', [WIDGETS], store=store, save=True, notes='first, "initial" pass')
    assert first.history.is_reapplication is False
    assert first.record.notes == 'first, "initial" pass'

    second = evaluate_applicant(client, 'Alice', [WIDGETS], store=store)
    assert second.history.is_reapplication is True
    assert second.history.current_analysis.application_type == 'renewal'
    assert second.history.status_change == 'same'
    assert second.record is None
    assert len(store.query_all()) == 1


def test_batch_isolates_failures_and_keeps_order(client, store):
    applicants = [
        {'username': 'alice', 'repositories': [WIDGETS], 'notes': 'batch'},
        {'username': 'ghost', 'repositories': [WIDGETS]},
        {'username': 'bob', 'repositories': ['not a url']},
        {'username': 'bob', 'repositories': [GADGETS]},
    ]
    results = evaluate_batch(client, applicants, store=store, save=True, max_workers=3)
    assert [r.username for r in results] == ['alice', 'ghost', 'bob', 'bob']
    assert [r.status for r in results] == ['completed', 'error', 'error', 'completed']
    assert 'ghost' in results[1].error
    assert results[2].error == NO_REPOSITORIES_ERROR
    assert summarize_batch(results) == {'total': 4, 'completed': 2, 'errors': 2, 'exceeds': 1, 'meets': 0, 'falls_short': 1}
    assert sorted(r.username for r in store.query_all()) == ['alice', 'bob']


def test_empty_batch(client):
    assert evaluate_batch(client, []) == []
    assert summarize_batch([])['total'] == 0


def test_batch_keeps_total_workers_within_bound(client, monkeypatch):
    seen = []
    real = evaluator.evaluate_applicant

    def recording(*args, **kwargs):
        seen.append(kwargs['max_workers'])
        return real(*args, **kwargs)

    monkeypatch.setattr(evaluator, 'evaluate_applicant', recording)
    evaluate_batch(client, [{'username': 'alice', 'repositories': [WIDGETS, GADGETS]}, {'username': 'bob', 'repositories': [GADGETS]}], save=False, max_workers=4)
    assert seen == [1, 1]
    seen.clear()
    evaluate_batch(client, [{'username': 'alice', 'repositories': [WIDGETS, GADGETS]}], save=False, max_workers=4)
    assert seen == [4]
