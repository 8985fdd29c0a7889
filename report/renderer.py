"""
Report renderer: text/Markdown/HTML/JSON summaries of applicant evaluations and stored history.
Markdown and HTML are rendered from the Jinja2 templates in report/templates.
"""

from typing import Optional, List, Dict, Any
import os
import json
from jinja2 import Environment, FileSystemLoader, select_autoescape
from evaluator import ApplicantEvaluation
from storage.history import AnalysisRecord

TEMPLATE_DIR = os.path.join(os.path.dirname(__file__), 'templates')

STATUS_TEXT = {
    'exceeds': 'Exceeds Requirements',
    'meets': 'Meets Requirements',
    'falls_short': 'Falls Short',
}
TREND_ARROWS = {'up': '↑', 'down': '↓', 'same': '→'}


def status_text(status: Optional[str]) -> str:
    return STATUS_TEXT.get(status or '', status or 'n/a')


def _environment() -> Environment:
    env = Environment(loader=FileSystemLoader(TEMPLATE_DIR), autoescape=select_autoescape(['html', 'xml', 'html.j2']))
    env.filters['status_text'] = status_text
    env.filters['trend_arrow'] = lambda t: TREND_ARROWS.get(t, t)
    return env


def _render_template(name: str, **context) -> str:
    return _environment().get_template(name).render(**context)


def _applicant_line(ev: Dict[str, Any]) -> List[str]:
    lines = [f"Applicant: {ev['username']}"]
    if ev['status'] != 'completed':
        lines.append(f"  Error: {ev['error']}")
        return lines
    agg = ev['aggregated_analysis']
    lines.append(f"  Overall: {status_text(agg['overall_status'])} ({agg['summary']['passed']}/{agg['summary']['total']} criteria, score {agg['summary']['score']}%)")
    for c in agg['criteria']:
        lines.append(f"  - {c['name']}: {c['actual']} / {c['required']} [{c['status']}] {c['percentage']}%")
    history = ev.get('history')
    if history and history['is_reapplication']:
        trends = ', '.join(f"{k} {TREND_ARROWS.get(v, v)}" for k, v in history['trends'].items())
        lines.append(
            f"  Renewal: last applied {history['days_since_last_application']} day(s) ago, status {history['status_change']}; {trends}"
        )
    if ev.get('record_id'):
        lines.append(f"  Saved as {ev['record_id']}")
    return lines


def render_text(evaluations: List[Dict[str, Any]], summary: Optional[Dict[str, int]] = None) -> str:
    """Render a plain-text summary."""
    lines: List[str] = []
    for ev in evaluations:
        lines.extend(_applicant_line(ev))
    if summary:
        lines.append('')
        lines.append('Batch: ' + ', '.join(f"{k}={v}" for k, v in summary.items()))
    return "\n".join(lines)


def render_json(evaluations: List[Dict[str, Any]], summary: Optional[Dict[str, int]] = None) -> str:
    """Export evaluations (and the batch summary, when given) as JSON."""
    if summary is None:
        payload: Any = evaluations[0] if len(evaluations) == 1 else evaluations
    else:
        payload = {'results': evaluations, 'summary': summary}
    return json.dumps(payload, indent=2, default=str)


def render(
    evaluations: List[ApplicantEvaluation],
    fmt: str = 'text',
    summary: Optional[Dict[str, int]] = None,
    generated_at: Optional[str] = None,
) -> str:
    """Render one or more applicant evaluations in the requested format (text, md, html, json)."""
    data = [e.to_dict() for e in evaluations]
    fmt_l = (fmt or 'text').lower()
    if fmt_l in ('md', 'markdown'):
        return '\n\n---\n\n'.join(_render_template('section_applicant.md.j2', applicant=ev) for ev in data)
    if fmt_l in ('html', 'htm'):
        return _render_template('report.html.j2', applicants=data, summary=summary, generated_at=generated_at)
    if fmt_l in ('json', 'js'):
        return render_json(data, summary)
    return render_text(data, summary)


def render_history(records: List[AnalysisRecord], fmt: str = 'text') -> str:
    """Render stored analysis records, newest first as given."""
    data = [r.to_dict() for r in records]
    fmt_l = (fmt or 'text').lower()
    if fmt_l in ('json', 'js'):
        return json.dumps(data, indent=2)
    if fmt_l in ('md', 'markdown'):
        return _render_template('history.md.j2', records=data)
    if fmt_l in ('html', 'htm'):
        return _render_template('history.html.j2', records=data)
    if not data:
        return 'No stored analyses.'
    lines = []
    for r in data:
        lines.append(
            f"{r['timestamp']}  {r['username']:<20} {r['application_type']:<8} {r['overall_status']:<12} "
            f"${r['credit_recommendation']:<4} {';'.join(r['repositories'])}"
        )
        if r['notes']:
            lines.append(f"    notes: {r['notes']}")
    return "\n".join(lines)
