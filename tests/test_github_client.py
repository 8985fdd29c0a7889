from unittest.mock import patch, Mock

import pytest
import requests

from ingest.github import GitHubClient, NotFound, Forbidden, UpstreamUnavailable, parse_repo_url
from storage.cache import Cache


def _response(status, body=None, headers=None):
    resp = Mock()
    resp.status_code = status
    resp.json.return_value = body
    resp.text = str(body)
    resp.headers = headers or {}
    return resp


@pytest.fixture
def no_sleep():
    with patch('storage.retry.time.sleep') as sleeper:
        yield sleeper


@pytest.mark.parametrize('url,expected', [
    ('https://github.com/acme/widgets', ('acme', 'widgets')),
    ('https://github.com/acme/widgets.git', ('acme', 'widgets')),
    ('https://github.com/acme/widgets/pulls?q=1', ('acme', 'widgets')),
    ('git@github.com:acme/widgets.git', ('acme', 'widgets')),
    ('https://gitlab.com/acme/widgets', None),
    ('https://github.com/acme', None),
    ('', None),
])
def test_parse_repo_url(url, expected):
    assert parse_repo_url(url) == expected


def test_get_user_normalizes_payload(no_sleep):
    body = {'login': 'alice', 'name': 'Alice', 'avatar_url': 'https://a', 'public_repos': 12}
    with patch('storage.retry.requests.get', return_value=_response(200, body)) as mocked:
        user = GitHubClient('tok').get_user('alice')
    assert (user.login, user.name, user.public_repos) == ('alice', 'Alice', 12)
    args, kwargs = mocked.call_args
    assert args[0] == 'https://api.github.com/users/alice'
    assert kwargs['headers']['Authorization'] == 'Bearer tok'
    assert kwargs['timeout'] > 0


def test_not_found_and_forbidden(no_sleep):
    client = GitHubClient(None)
    with patch('storage.retry.requests.get', return_value=_response(404, {'message': 'Not Found'})):
        with pytest.raises(NotFound) as exc:
            client.get_repository('acme', 'missing')
    assert exc.value.status == 404
    with patch('storage.retry.requests.get', return_value=_response(403, {'message': 'Must have push access'})):
        with pytest.raises(Forbidden):
            client.get_collaborator_permission('acme', 'widgets', 'alice')


def test_server_error_is_unavailable(no_sleep):
    with patch('storage.retry.requests.get', return_value=_response(500, {'message': 'oops'})):
        with pytest.raises(UpstreamUnavailable) as exc:
            GitHubClient(None).get_user('alice')
    assert exc.value.status == 500


def test_retries_then_gives_up_on_network_errors(no_sleep):
    with patch('storage.retry.requests.get', side_effect=requests.ConnectionError('boom')) as mocked:
        with pytest.raises(UpstreamUnavailable) as exc:
            GitHubClient(None).get_user('alice')
    assert exc.value.status == 0
    assert mocked.call_count >= 2


def test_rate_limited_response_is_retried(no_sleep):
    limited = _response(403, {'message': 'rate limit'}, headers={'X-RateLimit-Remaining': '0', 'X-RateLimit-Reset': '0'})
    ok = _response(200, {'login': 'alice'})
    with patch('storage.retry.requests.get', side_effect=[limited, ok]):
        user = GitHubClient(None).get_user('alice')
    assert user.login == 'alice'
    assert no_sleep.called


def test_collaborator_permission_prefers_role_name(no_sleep):
    with patch('storage.retry.requests.get', return_value=_response(200, {'permission': 'write', 'role_name': 'maintain'})):
        assert GitHubClient(None).get_collaborator_permission('acme', 'widgets', 'alice') == 'maintain'


def test_closed_pull_requests_params_and_cache(no_sleep):
    payload = [{'number': 7, 'title': 't', 'user': None, 'created_at': '2024-05-01T00:00:00Z', 'merged_at': '2024-05-02T00:00:00Z'}]
    cache = Cache(':memory:')
    client = GitHubClient(None, cache=cache)
    with patch('storage.retry.requests.get', return_value=_response(200, payload)) as mocked:
        prs = client.list_closed_pull_requests('Acme', 'Widgets', page=2, per_page=50)
        again = client.list_closed_pull_requests('Acme', 'Widgets', page=2, per_page=50)
    assert mocked.call_count == 1
    params = mocked.call_args[1]['params']
    assert params == {'state': 'closed', 'sort': 'updated', 'direction': 'desc', 'page': 2, 'per_page': 50}
    assert prs[0].author_login is None
    assert again[0].merged_at.year == 2024
    cache.close()
