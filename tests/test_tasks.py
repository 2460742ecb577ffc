import unittest
from types import SimpleNamespace
from unittest.mock import patch

from pub_sync import tasks
from pub_sync.sync_tracker import AlreadyRunningError


@patch.object(tasks, "init_db")
class SyncPublicationsTaskTests(unittest.TestCase):
    def test_result_is_returned_as_is(self, init_db) -> None:
        result = {"status": "completed", "imported": 2}
        with patch.object(tasks, "run_sync", return_value=result) as run_sync:
            self.assertEqual(tasks.sync_publications.run("full", dry_run=True), result)
        init_db.assert_called_once_with()
        run_sync.assert_called_once_with("full", dry_run=True, max_per_term=None)

    def test_error_result_is_not_retried(self, init_db) -> None:
        result = {"status": "error", "error": "esearch exploded"}
        with patch.object(tasks, "run_sync", return_value=result) as run_sync:
            self.assertEqual(tasks.sync_publications.run(), result)
        run_sync.assert_called_once()
        self.assertEqual(tuple(getattr(tasks.sync_publications, "autoretry_for", ())), ())

    def test_overlapping_run_is_skipped(self, init_db) -> None:
        with patch.object(tasks, "run_sync", side_effect=AlreadyRunningError("sync is already running")):
            out = tasks.sync_publications.run("incremental")
        self.assertEqual(out["status"], "skipped")
        self.assertIn("already running", out["reason"])


@patch.object(tasks, "init_db")
class RankCitationSourcesTaskTests(unittest.TestCase):
    def test_reports_ranking(self, init_db) -> None:
        report = SimpleNamespace(recommendation="Prefer crossref", sources={})
        with patch.object(tasks, "compare_citation_sources", return_value=report) as compare, patch.object(
            tasks, "rank_sources", return_value=["crossref", "openalex"]
        ):
            out = tasks.rank_citation_sources.run(sample_size=10)
        compare.assert_called_once_with(sample_size=10)
        self.assertEqual(out, {"ranking": ["crossref", "openalex"], "recommendation": "Prefer crossref"})


if __name__ == "__main__":
    unittest.main()
