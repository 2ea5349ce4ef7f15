# Shared pytest fixtures: in-memory reference/results stores, a fake clock
# and small artifact builders.
from __future__ import annotations

import io
import tempfile
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from copy import deepcopy
from pathlib import Path
from typing import Any

import pandas as pd
import pytest

from otm_importer.logging.error_log import ErrorLogBuffer
from otm_importer.logging.init import reset_logging
from otm_importer.models.config_models import LimitsConfig
from otm_importer.models.reference import ExamDescriptor, ExamSession, MajorAssignment, Pupil
from otm_importer.models.result_record import ResultRecord
from otm_importer.services.grid_entry import GridEntryService
from otm_importer.services.interfaces import ReferenceStore, ResultsStore
from otm_importer.services.orchestrator import ImportPipeline
from otm_importer.state.drafts import DraftStore
from otm_importer.state.import_context import ImportContextManager
from otm_importer.state.store import MemoryStore

HEADER = "pupil_id,major1,major2,mandatory1,mandatory2,mandatory3"


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeReferenceStore(ReferenceStore):
    def __init__(
        self,
        pupils: Iterable[Pupil] = (),
        exams: Iterable[ExamSession] = (),
        study_years: Iterable[int] = (1,),
    ) -> None:
        self.pupils = {p.id: p for p in pupils}
        self.exams = {e.id: e for e in exams}
        self.study_years = set(study_years)
        self.calls: list[str] = []
        self._next_exam_id = max(self.exams, default=0) + 100

    def find_pupils(self, ids):
        self.calls.append("find_pupils")
        return {i: self.pupils[i] for i in ids if i in self.pupils}

    def find_pupils_by_login(self, logins):
        self.calls.append("find_pupils_by_login")
        wanted = set(logins)
        return {p.login: p for p in self.pupils.values() if p.login and p.login in wanted}

    def find_pupils_by_class(self, class_code, q=""):
        self.calls.append("find_pupils_by_class")
        needle = q.lower()
        found = [
            p
            for p in self.pupils.values()
            if p.class_code == class_code
            and (not needle or needle in p.surname.lower() or needle in p.name.lower())
        ]
        return sorted(found, key=lambda p: (p.surname, p.name, p.id))

    def find_exams(self, ids):
        self.calls.append("find_exams")
        return {i: self.exams[i] for i in ids if i in self.exams}

    def find_exam_by_descriptor(self, descriptor: ExamDescriptor):
        self.calls.append("find_exam_by_descriptor")
        for exam in self.exams.values():
            if exam.descriptor.key() == descriptor.key():
                return exam
        return None

    def find_or_create_exam(self, descriptor: ExamDescriptor):
        self.calls.append("find_or_create_exam")
        found = self.find_exam_by_descriptor(descriptor)
        if found is not None:
            return found
        exam = ExamSession.pending(descriptor).with_id(self._next_exam_id)
        self._next_exam_id += 1
        self.exams[exam.id] = exam
        return exam

    def study_year_exists(self, study_year_id):
        return study_year_id in self.study_years


class FakeResultsStore(ResultsStore):
    """Dict keyed by (pupil_id, otm_exam_id); transaction restores a snapshot on error."""

    def __init__(self) -> None:
        self.rows: dict[tuple[int, int], dict[str, Any]] = {}
        self.calls: list[str] = []
        self.fail_on_upsert: Exception | None = None

    def existing_keys(self, keys):
        self.calls.append("existing_keys")
        return {k for k in keys if k in self.rows}

    def fetch_results(self, pupil_ids, otm_exam_id):
        self.calls.append("fetch_results")
        return {
            pid: dict(self.rows[(pid, otm_exam_id)])
            for pid in pupil_ids
            if (pid, otm_exam_id) in self.rows
        }

    def upsert_results(self, records: Iterable[ResultRecord]) -> int:
        self.calls.append("upsert_results")
        if self.fail_on_upsert is not None:
            raise self.fail_on_upsert
        n = 0
        for r in records:
            self.rows[(r.pupil_id, r.otm_exam_id)] = r.as_dict()
            n += 1
        return n

    @contextmanager
    def transaction(self) -> Iterator[None]:
        self.calls.append("transaction")
        snapshot = deepcopy(self.rows)
        try:
            yield
        except BaseException:
            self.rows = snapshot
            raise


MOCK_EXAM = ExamSession(7, 1, "mock", "Mock 1", "2025-03-01", 1, "2024-2025")
REPETITION_EXAM = ExamSession(8, 1, "repetition", "Repeat 1", "2025-04-10", 1, "2024-2025")


def _pupils() -> list[Pupil]:
    return [
        Pupil(101, "Aliyev", "Anvar", "11A", "anvar", MajorAssignment(1, 2)),
        Pupil(102, "Karimova", "Dilnoza", "11A", "dilnoza", MajorAssignment(3, 4)),
        Pupil(103, "Rashidov", "Bekzod", "11A", None, MajorAssignment(5, 5)),
        Pupil(104, "Usmonova", "Zarina", "11A", None, None),
        Pupil(201, "Toshmatov", "Jasur", "11B", "jasur", MajorAssignment(1, 3)),
    ]


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """state_directory: ./var/state
upload_directory: ./var/uploads
limits:
  max_upload_bytes: 1000000
  context_ttl_seconds: 3600
  artifact_ttl_seconds: 21600
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: school
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def reference_store() -> FakeReferenceStore:
    return FakeReferenceStore(pupils=_pupils(), exams=[MOCK_EXAM, REPETITION_EXAM])


@pytest.fixture()
def results_store() -> FakeResultsStore:
    return FakeResultsStore()


@pytest.fixture()
def memory_store(clock: FakeClock) -> MemoryStore:
    return MemoryStore(clock=clock)


@pytest.fixture()
def error_log(tmp_path: Path) -> ErrorLogBuffer:
    return ErrorLogBuffer(tmp_path / "logs")


@pytest.fixture()
def contexts(memory_store: MemoryStore, tmp_path: Path) -> ImportContextManager:
    return ImportContextManager(memory_store, tmp_path / "uploads", LimitsConfig())


@pytest.fixture()
def pipeline(reference_store, results_store, contexts, error_log) -> ImportPipeline:
    return ImportPipeline(reference_store, results_store, contexts, error_log)


@pytest.fixture()
def drafts(memory_store: MemoryStore) -> DraftStore:
    return DraftStore(memory_store)


@pytest.fixture()
def grid(reference_store, results_store, drafts, error_log) -> GridEntryService:
    return GridEntryService(reference_store, results_store, drafts, error_log)


@pytest.fixture()
def make_xlsx():
    """Build .xlsx bytes from a list of rows (first row is written as-is, no pandas header)."""
    def _make(rows: list[list[object]]) -> bytes:
        buf = io.BytesIO()
        with pd.ExcelWriter(buf, engine="openpyxl") as writer:
            pd.DataFrame(rows).to_excel(writer, sheet_name="OTM", header=False, index=False)
        return buf.getvalue()
    return _make


@pytest.fixture()
def make_csv():
    def _make(*lines: str, header: str = HEADER) -> bytes:
        body = [header, *lines] if header else list(lines)
        return ("\n".join(body) + "\n").encode("utf-8")
    return _make
