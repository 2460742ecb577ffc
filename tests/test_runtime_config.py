import tempfile
import unittest
from pathlib import Path

from pub_sync.runtime_config import load_runtime_config


class RuntimeConfigTests(unittest.TestCase):
    def _load(self, text: str):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "runtime.toml"
            path.write_text(text, encoding="utf-8")
            return load_runtime_config(path)

    def test_missing_file_uses_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            cfg = load_runtime_config(Path(tmp) / "absent.toml")
        self.assertEqual(cfg.sync.history_limit, 20)
        self.assertEqual(cfg.citations.sources, ("openalex", "crossref"))
        self.assertEqual(cfg.pubmed.database, "pubmed")

    def test_reads_values_from_file(self) -> None:
        cfg = self._load(
            "[sync]\ngrace_seconds = 5\nhistory_limit = 3\n"
            "[citations]\nsources = [\"crossref\"]\nmailto = \"ops@example.org\"\n"
            "[pubmed]\nsearch_terms = [\"pulse wave velocity\"]\nmax_per_term = 25\n"
        )
        self.assertEqual(cfg.sync.grace_seconds, 5.0)
        self.assertEqual(cfg.sync.history_limit, 3)
        self.assertEqual(cfg.citations.sources, ("crossref",))
        self.assertEqual(cfg.citations.mailto, "ops@example.org")
        self.assertEqual(cfg.pubmed.search_terms, ("pulse wave velocity",))
        self.assertEqual(cfg.pubmed.max_per_term, 25)
        self.assertEqual(cfg.pubmed.fetch_batch_size, 200)

    def test_invalid_toml_falls_back_to_defaults(self) -> None:
        cfg = self._load("[sync\nhistory_limit = ")
        self.assertEqual(cfg.sync.history_limit, 20)

    def test_bad_values_fall_back_per_field(self) -> None:
        cfg = self._load(
            "[sync]\nhistory_limit = -4\ngrace_seconds = \"soon\"\n"
            "[citations]\nsources = []\nmailto = \"  \"\n"
        )
        self.assertEqual(cfg.sync.history_limit, 20)
        self.assertEqual(cfg.sync.grace_seconds, 60.0)
        self.assertEqual(cfg.citations.sources, ("openalex", "crossref"))
        self.assertEqual(cfg.citations.mailto, "research@example.org")


if __name__ == "__main__":
    unittest.main()
