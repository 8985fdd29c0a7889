"""
CLI entry point for eligibility_eval. Wires the pipeline: GitHub -> access/stats -> score -> history -> report
"""

import argparse
import csv
import json
import logging
import os
import re
import webbrowser
from datetime import datetime, timezone
from evaluator import evaluate_applicant, evaluate_batch, summarize_batch, DEFAULT_MAX_WORKERS
from ingest.github import GitHubClient, GitHubError
from report.renderer import render, render_history
from scoring.criteria import CriteriaAnalyzer
from scoring.utils import load_requirements, load_preset, list_presets
from storage.cache import Cache, configure_retry
from storage.history import HistoryStore

DEFAULT_HISTORY_FILE = os.path.join('data', 'analyses.csv')
OUTPUT_EXTENSIONS = {"html": "html", "md": "md", "json": "json"}


def _print_json(obj):
    print(json.dumps(obj, indent=2, default=str))


def _print_cache_stats(cache: Cache):
    _print_json(cache.stats())


def _print_cache_list(cache: Cache):
    _print_json(cache.list_keys(limit=1000))


def _print_cache_get(cache: Cache, key: str):
    entry = cache.get(key)
    if entry is None:
        print(f"Cache key not found: {key}")
    else:
        _print_json(entry)


def _remove_cache_key(cache: Cache, key: str, force: bool):
    if not force:
        confirm = input(f"Are you sure you want to remove cache key '{key}' from {cache.path}? [y/N]: ")
        if confirm.strip().lower() not in ("y", "yes"):
            print("Aborted cache key removal.")
            return
    removed = cache.delete_key(key)
    if removed:
        print(f"Removed {removed} row(s) for key: {key}")
    else:
        print(f"Cache key not found: {key}")


def _clear_cache(cache: Cache, force: bool):
    if not force:
        confirm = input(f"Are you sure you want to clear the cache at {cache.path}? This cannot be undone. [y/N]: ")
        if confirm.strip().lower() not in ("y", "yes"):
            print("Aborted cache clear.")
            return
    cache.clear()
    print(f"Cleared cache at {cache.path}")


def _cache_action_requested(args) -> bool:
    return bool(args.cache_info or args.cache_clear or args.cache_list or args.cache_get or args.cache_remove)


def _handle_cache_actions(args) -> bool:
    """Run the first requested cache inspection/management action. Returns True if one ran."""
    if not _cache_action_requested(args):
        return False
    with Cache(args.cache or "cache.db") as cache:
        flag_actions = [
            (args.cache_info, lambda: _print_cache_stats(cache)),
            (args.cache_clear, lambda: _clear_cache(cache, args.force)),
            (args.cache_list, lambda: _print_cache_list(cache)),
            (bool(args.cache_get), lambda: _print_cache_get(cache, args.cache_get)),
            (bool(args.cache_remove), lambda: _remove_cache_key(cache, args.cache_remove, args.force)),
        ]
        for enabled, handler in flag_actions:
            if enabled:
                handler()
                break
    return True


def _open_file_in_browser(path: str):
    """Open a file URL in the system default web browser."""
    webbrowser.open("file://" + os.path.abspath(path))


def _default_out_path(prefix: str, ext: str) -> str:
    return f"{prefix}_{datetime.now(timezone.utc).strftime('%Y%m%dT%H%M%SZ')}.{ext}"


def _write_report_file(out_path: str, content: str, open_html: bool = False):
    """Write the rendered content to a file and optionally open HTML in the browser."""
    out_dir = os.path.dirname(out_path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    with open(out_path, 'w', encoding='utf-8', newline='') as fh:
        fh.write(content)
    print(f"Wrote report to {out_path}")
    if open_html:
        try:
            _open_file_in_browser(out_path)
        except webbrowser.Error:
            print('Failed to open browser automatically; file saved at', out_path)


def write_output(fmt: str, rendered: str, args, prefix: str = "eligibility_report"):
    """Write HTML/MD/JSON output to a file (when requested or for HTML) and everything else to stdout."""
    ext = OUTPUT_EXTENSIONS.get(fmt)
    if ext and (args.out_file.strip() or fmt == "html"):
        out_path = args.out_file.strip() or _default_out_path(prefix, ext)
        _write_report_file(out_path, rendered, open_html=(args.open and fmt == "html"))
    else:
        print(rendered)


def _resolve_token(args, parser):
    """Resolve the GitHub token from the CLI flag or the GITHUB_TOKEN environment variable."""
    token = args.github_token or os.getenv('GITHUB_TOKEN')
    if not token:
        parser.error('Missing required token: github_token (CLI flag --github_token or env GITHUB_TOKEN)')
    args.github_token = token


def _load_json_file(path: str, description: str):
    """Load a JSON file; prints the problem and returns None on failure."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        print(f"Failed to read {description} {path}: {e}")
        return None


def _split_repositories(text: str) -> list:
    return [r.strip() for r in re.split(r'[\n,;]', text or '') if r.strip()]


def _load_applicants_csv(path: str):
    """Load applicants from a CSV with username and repositories columns (notes optional)."""
    try:
        with open(path, 'r', encoding='utf-8', newline='') as f:
            reader = csv.DictReader(f)
            columns = {(name or '').strip().lower(): name for name in reader.fieldnames or []}
            if 'username' not in columns or 'repositories' not in columns:
                print(f"Invalid user list file {path}; CSV needs 'username' and 'repositories' columns.")
                return None
            applicants = []
            for row in reader:
                username = (row.get(columns['username']) or '').strip()
                if not username:
                    continue
                repos = _split_repositories(row.get(columns['repositories']))
                if not repos:
                    print(f"Skipping {username}: no repositories listed")
                    continue
                notes = (row.get(columns['notes']) or '').strip() if 'notes' in columns else ''
                applicants.append({'username': username, 'repositories': repos, 'notes': notes or None})
    except (OSError, csv.Error) as e:
        print(f"Failed to read user list file {path}: {e}")
        return None
    return applicants


def _load_applicants(path: str):
    """Load a JSON array of {username, repositories, notes} entries (or a CSV with those columns); returns None when invalid."""
    if path.lower().endswith('.csv'):
        return _load_applicants_csv(path)
    data = _load_json_file(path, 'user list file')
    if not isinstance(data, list):
        print(f"Invalid user list file {path}; expected an array of applicants.")
        return None
    applicants = []
    for entry in data:
        if not isinstance(entry, dict) or not entry.get('username'):
            print(f"Skipping invalid applicant entry: {entry!r}")
            continue
        repos = entry.get('repositories') or []
        if isinstance(repos, str):
            repos = _split_repositories(repos)
        applicants.append({'username': entry['username'], 'repositories': repos, 'notes': entry.get('notes')})
    return applicants


def _build_analyzer(args) -> CriteriaAnalyzer:
    if args.preset:
        return CriteriaAnalyzer(load_preset(args.preset, args.requirements or None))
    return CriteriaAnalyzer(load_requirements(args.requirements or None))


def _show_history(args, store: HistoryStore):
    records = store.query_all() if args.history_all else store.query_by_identity(args.history)
    fmt = (args.output or "text").lower()
    write_output(fmt, render_history(records, fmt=fmt), args, prefix="eligibility_history")


def run_pipeline(args, cache, store: HistoryStore):
    """Evaluate a single applicant or a batch and return (fmt, rendered)."""
    analyzer = _build_analyzer(args)
    client = GitHubClient(args.github_token, cache=cache, timeout=args.timeout)
    fmt = (args.output or "text").lower()
    generated_at = datetime.now(timezone.utc).isoformat()

    if args.user_list_file:
        applicants = _load_applicants(args.user_list_file)
        if applicants is None:
            return fmt, None
        results = evaluate_batch(client, applicants, analyzer=analyzer, store=store, save=args.save, max_workers=args.max_workers)
        return fmt, render(results, fmt=fmt, summary=summarize_batch(results), generated_at=generated_at)

    result = evaluate_applicant(
        client, args.user, args.repo, analyzer=analyzer, store=store, save=args.save, notes=args.notes or None, max_workers=args.max_workers
    )
    return fmt, render([result], fmt=fmt, generated_at=generated_at)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Cloud-credit eligibility evaluation CLI")
    parser.add_argument("--user", type=str, default="", help="GitHub login of the applicant")
    parser.add_argument("--repo", type=str, action="append", default=[], help="Repository URL (repeat for several repositories)")
    parser.add_argument("--notes", type=str, default="", help="Free-text notes stored with the record (with --save)")
    parser.add_argument("--user-list-file", type=str, default="", help="JSON array of {username, repositories, notes} or a CSV with those columns, evaluated as a batch")
    parser.add_argument("--save", action="store_true", help="Append verdicts to the history file")
    parser.add_argument("--history", type=str, default="", help="Print stored analyses for this user and exit")
    parser.add_argument("--history-all", action="store_true", help="Print all stored analyses and exit")
    parser.add_argument(
        "--history-file", type=str, default=os.getenv("ELIGIBILITY_HISTORY_FILE", DEFAULT_HISTORY_FILE), help="Path to the analyses CSV file"
    )
    parser.add_argument("--requirements", type=str, default="", help="Path to a rubric YAML file (defaults to config/requirements.yaml)")
    parser.add_argument("--preset", type=str, default="", help="Named rubric preset from the requirements YAML")
    parser.add_argument("--list-presets", action="store_true", help="List the rubric presets defined in the requirements YAML and exit")
    parser.add_argument("--output", type=str, help="Output format (text, md, html, json)", default="text")
    parser.add_argument("--out-file", type=str, default="", help="Output file path (for HTML/MD/JSON). If omitted a default name is used for HTML")
    parser.add_argument("--open", action="store_true", help="Open the generated HTML report in the default browser")
    parser.add_argument("--github_token", type=str)
    parser.add_argument(
        "--max-workers", type=int, default=int(os.getenv("ELIGIBILITY_MAX_WORKERS", str(DEFAULT_MAX_WORKERS))), help="Concurrent repositories/applicants"
    )
    parser.add_argument("--log-level", type=str, default=os.getenv("ELIGIBILITY_LOG_LEVEL", "WARNING"), help="Logging level (DEBUG, INFO, WARNING, ERROR)")
    parser.add_argument("--cache", type=str, default="", help="Path to SQLite cache file (optional)")
    # retry/backoff knobs: optional CLI overrides. Environment variables ELIGIBILITY_MAX_RETRIES, ELIGIBILITY_BACKOFF_BASE,
    # ELIGIBILITY_BACKOFF_JITTER, ELIGIBILITY_MAX_BACKOFF and ELIGIBILITY_HTTP_TIMEOUT set the defaults.
    parser.add_argument("--max-retries", type=int, default=None, help="Maximum retry attempts for HTTP requests (overrides ELIGIBILITY_MAX_RETRIES env)")
    parser.add_argument("--backoff-base", type=float, default=None, help="Base backoff seconds (overrides ELIGIBILITY_BACKOFF_BASE env)")
    parser.add_argument("--backoff-jitter", type=float, default=None, help="Jitter seconds added to backoff (overrides ELIGIBILITY_BACKOFF_JITTER env)")
    parser.add_argument("--max-backoff", type=float, default=None, help="Maximum backoff cap in seconds (overrides ELIGIBILITY_MAX_BACKOFF env)")
    parser.add_argument("--timeout", type=float, default=None, help="Per-request timeout in seconds (overrides ELIGIBILITY_HTTP_TIMEOUT env)")
    parser.add_argument("--cache-info", action="store_true", help="Show cache statistics (requires --cache or uses default cache.db)")
    parser.add_argument("--cache-clear", action="store_true", help="Clear the persistent cache (requires --cache or uses default cache.db)")
    parser.add_argument("--cache-list", action="store_true", help="List cache keys (requires --cache or uses default cache.db)")
    parser.add_argument("--cache-get", type=str, default="", help="Get a specific cache key value (requires --cache or uses default cache.db)")
    parser.add_argument("--cache-remove", type=str, default="", help="Remove a specific cache key (requires --cache or uses default cache.db)")
    parser.add_argument("--force", action="store_true", help="Force actions without confirmation (use with --cache-clear or --cache-remove)")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    # CLI flags take precedence over environment variables
    configure_retry(
        max_retries=args.max_retries, backoff_base=args.backoff_base, backoff_jitter=args.backoff_jitter, max_backoff=args.max_backoff, timeout=args.timeout
    )

    if _handle_cache_actions(args):
        return

    if args.list_presets:
        for name in list_presets(args.requirements or None):
            print(name)
        return

    store = HistoryStore(args.history_file)
    if args.history or args.history_all:
        _show_history(args, store)
        return

    if not args.user_list_file and not (args.user and args.repo):
        parser.error("Provide --user with at least one --repo, or --user-list-file")

    _resolve_token(args, parser)

    cache = Cache(args.cache) if args.cache else None
    try:
        try:
            fmt, rendered = run_pipeline(args, cache, store)
        except GitHubError as exc:
            parser.exit(1, f"Evaluation failed: {exc}\n")
        if rendered is not None:
            write_output(fmt, rendered, args)
    finally:
        if cache:
            cache.close()


if __name__ == "__main__":
    main()
