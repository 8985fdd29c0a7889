import unittest

from access.permissions import PermissionResolver, resolve_write_access
from ingest.github import UpstreamUnavailable
from fakes import FakeGitHubClient, make_pr, NOW


class TestPermissionResolver(unittest.TestCase):
    def setUp(self):
        self.client = FakeGitHubClient()
        self.client.add_repo('acme', 'widgets', 10)
        self.resolver = PermissionResolver(self.client, days=90, now=lambda: NOW)

    def test_collaborator_permission_short_circuits(self):
        self.client.permissions['acme/widgets:alice'] = 'maintain'
        self.assertTrue(self.resolver.has_write_access('acme', 'widgets', 'alice'))
        self.assertEqual(self.client.called('list_collaborators'), 0)
        self.assertEqual(self.client.called('list_commits_by_author'), 0)

    def test_read_permission_falls_through_to_listing(self):
        self.client.permissions['acme/widgets:alice'] = 'read'
        self.client.collaborators['acme/widgets'] = ['bob', 'Alice']
        self.assertTrue(self.resolver.has_write_access('acme', 'widgets', 'alice'))

    def test_forbidden_permission_check_falls_through(self):
        # no permission entry: the fake answers 403 like GitHub does for tokens without push access
        self.client.pulls['acme/widgets'] = [make_pr(1, 'carol', 2, merged_by='ALICE')]
        self.assertTrue(self.resolver.has_write_access('acme', 'widgets', 'alice'))
        self.assertEqual(self.client.called('list_commits_by_author'), 0)

    def test_unmerged_pr_is_not_merge_evidence(self):
        pr = make_pr(1, 'carol', None, merged_by='alice')
        self.client.pulls['acme/widgets'] = [pr]
        self.assertFalse(self.resolver.has_write_access('acme', 'widgets', 'alice'))

    def test_recent_commits_probe(self):
        self.client.commits['acme/widgets:alice'] = [{'sha': 'abc'}]
        self.assertTrue(self.resolver.has_write_access('acme', 'widgets', 'alice'))

    def test_every_probe_failing_means_no_access(self):
        self.client.failures['list_collaborators'] = UpstreamUnavailable('boom')
        self.client.failures['list_closed_pull_requests'] = UpstreamUnavailable('boom')
        self.client.failures['list_commits_by_author'] = RuntimeError('boom')
        self.assertFalse(self.resolver.has_write_access('acme', 'widgets', 'alice'))
        self.assertEqual(self.client.called('list_commits_by_author'), 1)

    def test_probe_order(self):
        order = []

        def probe(name, answer):
            def _p(owner, repo, username):
                order.append(name)
                return answer
            return _p

        resolver = PermissionResolver(self.client, probes=[('a', probe('a', False)), ('b', probe('b', True)), ('c', probe('c', True))])
        self.assertTrue(resolver.has_write_access('acme', 'widgets', 'alice'))
        self.assertEqual(order, ['a', 'b'])


def test_resolve_write_access_wrapper():
    client = FakeGitHubClient()
    client.permissions['acme/widgets:dave'] = 'admin'
    assert resolve_write_access(client, 'acme', 'widgets', 'dave') is True
    assert resolve_write_access(client, 'acme', 'widgets', 'erin') is False


if __name__ == '__main__':
    unittest.main()
