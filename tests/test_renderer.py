import json
from datetime import datetime, timezone

import pytest

from evaluator import ApplicantEvaluation, evaluate_applicant, summarize_batch
from report.renderer import render, render_history, status_text
from storage.history import HistoryStore
from fakes import FakeGitHubClient, make_pr


@pytest.fixture
def evaluation():
    now = datetime.now(timezone.utc)
    client = FakeGitHubClient()
    client.add_user('alice')
    prs = [make_pr(i, 'alice', 1, now=now) for i in range(6)] + [make_pr(10 + i, f"ext{i % 2}", 2, now=now) for i in range(16)]
    client.add_repo('acme', 'widgets', 120, prs)
    client.permissions['acme/widgets:alice'] = 'write'
    return evaluate_applicant(client, 'alice', ['https://github.com/acme/widgets'], notes='<script>alert(1)</script>')


@pytest.fixture
def failed():
    ev = ApplicantEvaluation('ghost', ['https://github.com/x/y'])
    ev.status = 'error'
    ev.error = 'No repositories could be analyzed'
    return ev


def test_text_report(evaluation, failed):
    out = render([evaluation, failed], fmt='text', summary=summarize_batch([evaluation, failed]))
    assert 'Applicant: alice' in out
    assert 'Overall: Meets Requirements (5/5 criteria, score 100%)' in out
    assert 'Error: No repositories could be analyzed' in out
    assert 'Batch: total=2, completed=1, errors=1' in out


def test_json_single_and_batch(evaluation, failed):
    single = json.loads(render([evaluation], fmt='json'))
    assert single['username'] == 'alice'
    assert single['aggregated_analysis']['overall_status'] == 'meets'
    assert [c['criterion'] for c in single['aggregated_analysis']['criteria']] == [
        'repository_stars', 'write_access', 'total_merged_prs', 'external_contributors', 'user_merged_prs',
    ]
    batch = json.loads(render([evaluation, failed], fmt='json', summary={'total': 2}))
    assert batch['summary'] == {'total': 2}
    assert batch['results'][1]['status'] == 'error'


def test_markdown_sections(evaluation, failed):
    out = render([evaluation, failed], fmt='md')
    assert out.count('\n---\n') == 1
    assert '## alice' in out
    assert '| Repository Stars | 100 | 120 | meets | 120 |' in out
    assert '[acme/widgets](https://github.com/acme/widgets)' in out
    assert '_Not evaluated: No repositories could be analyzed_' in out


def test_html_escapes_user_content(evaluation):
    out = render([evaluation], fmt='html', generated_at='2024-06-01T00:00:00Z')
    assert out.lstrip().startswith('<!DOCTYPE html>')
    assert '&lt;script&gt;' in out
    assert '<script>alert(1)</script>' not in out
    assert 'Generated at 2024-06-01T00:00:00Z' in out


def test_history_formats(tmp_path, evaluation):
    store = HistoryStore(str(tmp_path / 'h.csv'))
    store.save_analysis('alice', ['https://github.com/acme/widgets'], evaluation.analysis, notes='line one\nline two')
    records = store.query_all()
    assert json.loads(render_history(records, fmt='json'))[0]['credit_recommendation'] == 300
    md = render_history(records, fmt='md')
    assert '| alice | initial | Meets Requirements | $300 |' in md
    assert 'line one line two' in md
    text = render_history(records)
    assert 'notes: line one' in text
    assert render_history([], fmt='text') == 'No stored analyses.'
    assert '_No stored analyses._' in render_history([], fmt='md')


def test_history_html_table_escapes_notes(tmp_path, evaluation):
    store = HistoryStore(str(tmp_path / 'h.csv'))
    store.save_analysis('alice', ['https://github.com/acme/widgets'], evaluation.analysis, notes='<b>late</b>')
    out = render_history(store.query_all(), fmt='html')
    assert out.lstrip().startswith('<!DOCTYPE html>')
    assert '<td class="meets">Meets Requirements</td>' in out
    assert '&lt;b&gt;late&lt;/b&gt;' in out
    assert '<a href="https://github.com/acme/widgets">' in out
    assert 'No stored analyses.' in render_history([], fmt='html')


def test_status_text_passthrough():
    assert status_text('exceeds') == 'Exceeds Requirements'
    assert status_text(None) == 'n/a'
    assert status_text('custom') == 'custom'
