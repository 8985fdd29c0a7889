import unittest
from datetime import datetime, timezone
from normalize.util import normalize_user, normalize_repository, normalize_pull_request, parse_timestamp, format_timestamp


class TestNormalize(unittest.TestCase):
    def test_normalize_user_minimal(self):
        user = normalize_user({'login': 'alice', 'public_repos': None})
        self.assertEqual(user.login, 'alice')
        self.assertIsNone(user.name)
        self.assertEqual(user.public_repos, 0)

    def test_normalize_repository(self):
        raw = {
            'name': 'widgets',
            'full_name': 'acme/widgets',
            'stargazers_count': 321,
            'html_url': 'https://github.com/acme/widgets',
            'owner': {'login': 'acme'},
            'permissions': {'admin': False, 'push': True},
        }
        repo = normalize_repository(raw)
        self.assertEqual(repo.full_name, 'acme/widgets')
        self.assertEqual(repo.stargazers_count, 321)
        self.assertEqual(repo.owner, 'acme')
        self.assertTrue(repo.permissions['push'])

    def test_repository_owner_falls_back_to_full_name(self):
        repo = normalize_repository({'full_name': 'acme/widgets'})
        self.assertEqual(repo.owner, 'acme')

    def test_normalize_pull_request(self):
        raw = {
            'number': 42,
            'title': 'Fix the thing',
            'user': {'login': 'bob'},
            'created_at': '2024-05-01T10:00:00Z',
            'merged_at': '2024-05-02T11:30:00Z',
            'merged_by': {'login': 'alice'},
            'html_url': 'https://github.com/acme/widgets/pull/42',
        }
        pr = normalize_pull_request(raw)
        self.assertEqual((pr.number, pr.author_login, pr.merged_by_login), (42, 'bob', 'alice'))
        self.assertEqual(pr.merged_at, datetime(2024, 5, 2, 11, 30, tzinfo=timezone.utc))

    def test_deleted_author_and_unmerged(self):
        pr = normalize_pull_request({'number': 1, 'user': None, 'created_at': '2024-05-01T10:00:00Z', 'merged_at': None, 'merged_by': None})
        self.assertIsNone(pr.author_login)
        self.assertIsNone(pr.merged_at)
        self.assertIsNone(pr.merged_by_login)

    def test_timestamps(self):
        ts = parse_timestamp('2024-05-01T10:00:00.123456Z')
        self.assertEqual(ts.tzinfo, timezone.utc)
        self.assertEqual(format_timestamp(ts), '2024-05-01T10:00:00.123456Z')
        self.assertEqual(parse_timestamp('2024-05-01T10:00:00').tzinfo, timezone.utc)
        self.assertIsNone(parse_timestamp(''))


if __name__ == '__main__':
    unittest.main()
