import os
import tempfile
import unittest

from scoring.criteria import DEFAULT_REQUIREMENTS, Requirements
from scoring.utils import load_requirements, load_preset, list_presets, default_requirements_path


RUBRIC = """
min_stars: 200
min_merged_prs: 30
presets:
  lenient:
    min_stars: 10
    days: 180
"""


class TestScoringUtils(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self._tmp.name, 'requirements.yaml')

    def tearDown(self):
        self._tmp.cleanup()

    def _write(self, text):
        with open(self.path, 'w', encoding='utf-8') as fh:
            fh.write(text)

    def test_missing_file_gives_defaults(self):
        self.assertEqual(load_requirements(os.path.join(self._tmp.name, 'nope.yaml')), DEFAULT_REQUIREMENTS)
        self.assertEqual(list_presets(os.path.join(self._tmp.name, 'nope.yaml')), [])

    def test_bundled_rubric_matches_defaults(self):
        self.assertTrue(os.path.exists(default_requirements_path()))
        self.assertEqual(load_requirements(), Requirements())
        self.assertIn('strict', list_presets())

    def test_partial_file_overlays_defaults(self):
        self._write(RUBRIC)
        req = load_requirements(self.path)
        self.assertEqual((req.min_stars, req.min_merged_prs, req.min_external_contributors, req.days), (200, 30, 2, 90))

    def test_preset_overlays_top_level(self):
        self._write(RUBRIC)
        req = load_preset('lenient', self.path)
        self.assertEqual((req.min_stars, req.min_merged_prs, req.days), (10, 30, 180))
        with self.assertRaises(ValueError):
            load_preset('missing', self.path)

    def test_invalid_files_raise(self):
        self._write('min_stars: [unclosed')
        with self.assertRaises(ValueError):
            load_requirements(self.path)
        self._write('- just\n- a list\n')
        with self.assertRaises(ValueError):
            load_requirements(self.path)
        self._write('min_stars: lots\n')
        with self.assertRaises(ValueError):
            load_requirements(self.path)
        self._write('min_stars: 0\n')
        with self.assertRaises(ValueError):
            load_requirements(self.path)

    def test_fractional_thresholds_are_rejected(self):
        for text in ('min_stars: 2.5\n', 'min_merged_prs: "7.5"\n', 'min_stars: true\n'):
            self._write(text)
            with self.assertRaises(ValueError):
                load_requirements(self.path)
        self._write('min_stars: 150.0\nmin_merged_prs: "25"\n')
        req = load_requirements(self.path)
        self.assertEqual((req.min_stars, req.min_merged_prs), (150, 25))


if __name__ == '__main__':
    unittest.main()
