from __future__ import annotations

from otm_importer.models.reference import ExamDescriptor

DESCRIPTOR = ExamDescriptor(1, "mock", "Mock 3", "2025-06-15", 1)


def _posted(**values: str) -> dict[str, str]:
    base = {
        "major1_correct": "20",
        "major2_correct": "20",
        "mandatory_ona_tili_correct": "7",
        "mandatory_matematika_correct": "7",
        "mandatory_uzb_tarix_correct": "7",
    }
    base.update(values)
    return base


def test_correction_round_trip_through_drafts(grid, reference_store, results_store):
    # 1. new exam session, one bad value
    first = grid.save_grid(
        "s1",
        "11A",
        {"101": _posted(major1_correct="35"), "102": _posted()},
        descriptor=DESCRIPTOR,
    )
    assert first.flashes[0].type == "warning"
    exam = reference_store.find_exam_by_descriptor(DESCRIPTOR)
    assert exam is not None
    assert set(results_store.rows) == {(102, exam.id)}

    # 2. the redirect target renders the draft once
    view = grid.load_grid("s1", "11A", otm_exam_id=exam.id)
    row = next(r for r in view.rows if r.pupil.id == 101)
    assert row.values["major1_correct"] == "35"
    assert row.errors == {"major1_correct": "major1 must be 0..30"}

    # 3. the corrected grid saves cleanly and clears the draft
    fixed = {r.pupil.id: dict(r.values) for r in view.rows}
    fixed[101]["major1_correct"] = "30"
    second = grid.save_grid("s1", "11A", fixed, otm_exam_id=exam.id)
    assert [(f.type, f.text) for f in second.flashes] == [("success", "OTM results saved: 2. Skipped (blank): 2.")]
    assert results_store.rows[(101, exam.id)]["major1_correct"] == 30
    assert results_store.rows[(102, exam.id)]["major1_correct"] == 20

    final = grid.load_grid("s1", "11A", otm_exam_id=exam.id)
    assert not final.draft_restored
    assert all(not r.errors for r in final.rows)
    assert next(r for r in final.rows if r.pupil.id == 101).values["major1_correct"] == "30"


def test_pending_exam_draft_is_found_by_descriptor(grid, reference_store):
    grid.save_grid("s1", "11A", {"101": _posted(major2_correct="40")}, descriptor=DESCRIPTOR)
    assert reference_store.find_exam_by_descriptor(DESCRIPTOR) is None
    view = grid.load_grid("s1", "11A", descriptor=DESCRIPTOR)
    assert view.exam.is_pending
    assert view.draft_restored
