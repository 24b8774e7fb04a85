import base64
import sys
import tempfile
import unittest
from io import BytesIO
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from docx import Document  # noqa: E402

from screener.parsing.extract import EMPTY_PDF_PLACEHOLDER  # noqa: E402
from screener.services.ranking import (  # noqa: E402
    AnalysisBatchFailed,
    NoCVsToAnalyze,
    ReprocessFailed,
    analyze_all_cvs,
    reprocess_cvs,
)
from screener.services.scoring import (  # noqa: E402
    ScoreResult,
    ScoringResponseMalformed,
    ScoringUnavailable,
)
from screener.schemas.cv import CVCreate  # noqa: E402
from screener.storage.db import CVStore  # noqa: E402


def make_cv(user_id: str, name: str, **overrides) -> CVCreate:
    data = {
        "user_id": user_id,
        "candidate_name": name,
        "candidate_email": f"{name.split()[0].lower()}@example.com",
        "file_name": f"{name.split()[0].lower()}.pdf",
        "file_type": "pdf",
        "extracted_text": f"{name}\nBackend engineer",
        "source": "Gmail",
    }
    data.update(overrides)
    return CVCreate(**data)


class FakeScorer:
    def __init__(self, scores, failures=None):
        self.scores = scores
        self.failures = failures or {}
        self.calls = []

    def score(self, cv_text, job_description, candidate_name):
        self.calls.append(candidate_name)
        if candidate_name in self.failures:
            raise self.failures[candidate_name]
        return ScoreResult(score=self.scores[candidate_name], strengths=["Python"], weaknesses=["Go"])


class AnalyzeAllTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.store = CVStore(str(Path(self._tmp.name) / "screener.db"))

    def tearDown(self):
        self.store.close()
        self._tmp.cleanup()

    def test_one_failure_does_not_stop_the_batch(self):
        for name in ("Jane Doe", "John Smith", "Ada Lovelace"):
            self.store.create_cv(make_cv("u1", name))
        scorer = FakeScorer(
            {"Jane Doe": 88, "Ada Lovelace": 61},
            failures={"John Smith": ScoringResponseMalformed("bad json")},
        )

        count = analyze_all_cvs("u1", "Senior Python developer", scorer, self.store)

        self.assertEqual(count, 2)
        self.assertEqual(len(scorer.calls), 3)
        analysed = {a.cv_id for a in self.store.list_analyses("u1")}
        john = [cv for cv in self.store.list_cvs("u1") if cv.candidate_name == "John Smith"][0]
        self.assertEqual(len(analysed), 2)
        self.assertNotIn(john.id, analysed)

    def test_all_failures_fail_the_batch(self):
        self.store.create_cv(make_cv("u1", "Jane Doe"))
        scorer = FakeScorer({}, failures={"Jane Doe": ScoringUnavailable("down")})
        with self.assertRaises(AnalysisBatchFailed):
            analyze_all_cvs("u1", "Senior Python developer", scorer, self.store)
        self.assertEqual(self.store.list_analyses("u1"), [])

    def test_no_cvs(self):
        with self.assertRaises(NoCVsToAnalyze):
            analyze_all_cvs("u1", "Senior Python developer", FakeScorer({}), self.store)

    def test_reanalysis_appends_history(self):
        self.store.create_cv(make_cv("u1", "Jane Doe"))
        analyze_all_cvs("u1", "Senior Python developer", FakeScorer({"Jane Doe": 50}), self.store)
        analyze_all_cvs("u1", "Staff Python developer", FakeScorer({"Jane Doe": 70}), self.store)

        self.assertEqual(len(self.store.list_analyses("u1")), 2)
        self.assertEqual(self.store.cvs_with_latest_analysis("u1")[0].analysis.score, 70)


class ReprocessTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.store = CVStore(str(Path(self._tmp.name) / "screener.db"))

    def tearDown(self):
        self.store.close()
        self._tmp.cleanup()

    def _docx_b64(self, text):
        document = Document()
        document.add_paragraph(text)
        buffer = BytesIO()
        document.save(buffer)
        return base64.b64encode(buffer.getvalue()).decode("ascii")

    def test_placeholder_text_is_replaced_when_extraction_succeeds(self):
        stale = self.store.create_cv(
            make_cv(
                "u1",
                "Jane Doe",
                file_name="jane.docx",
                file_type="docx",
                extracted_text="Text extraction failed: timeout",
                file_buffer=self._docx_b64("Jane Doe, Python developer"),
            )
        )
        healthy = self.store.create_cv(make_cv("u1", "John Smith"))
        no_bytes = self.store.create_cv(make_cv("u1", "Ada Lovelace", extracted_text=EMPTY_PDF_PLACEHOLDER))

        self.assertEqual(reprocess_cvs("u1", self.store), 1)
        self.assertIn("Python developer", self.store.get_cv(stale.id, "u1").extracted_text)
        self.assertEqual(self.store.get_cv(healthy.id, "u1").extracted_text, healthy.extracted_text)
        self.assertEqual(self.store.get_cv(no_bytes.id, "u1").extracted_text, EMPTY_PDF_PLACEHOLDER)

    def test_no_recoverable_candidate_fails_the_run(self):
        cv = self.store.create_cv(
            make_cv(
                "u1",
                "Jane Doe",
                extracted_text="PDF extraction failed: EOF marker not found",
                file_buffer=base64.b64encode(b"still not a pdf").decode("ascii"),
            )
        )
        with self.assertRaises(ReprocessFailed):
            reprocess_cvs("u1", self.store)
        self.assertTrue(self.store.get_cv(cv.id, "u1").extracted_text.startswith("PDF extraction failed:"))

    def test_nothing_to_reprocess(self):
        self.store.create_cv(make_cv("u1", "John Smith"))
        self.assertEqual(reprocess_cvs("u1", self.store), 0)


if __name__ == "__main__":
    unittest.main()
