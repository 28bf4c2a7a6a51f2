from io import BytesIO

import pytest
from conftest import CLASS_A, MATHS, SCIENCE
from fastapi.testclient import TestClient
from openpyxl import load_workbook

from results_engine.core.config import settings
from results_engine.core.scheduler import ManualTimers
from results_engine.main import create_application
from results_engine.schemas.exam import OptOutEntry

API = settings.API_V1_PREFIX


@pytest.fixture
def client(store):
    app = create_application(store=store, timers=ManualTimers())
    with TestClient(app) as client:
        yield client


@pytest.fixture
def session_id(client):
    response = client.post(f"{API}/sessions", json={"teacher_id": 7})
    assert response.status_code == 201
    return response.json()["session_id"]


def select(client, session_id, subject_id=MATHS, class_id=CLASS_A, exam_id=1):
    return client.put(
        f"{API}/sessions/{session_id}/selection",
        json={"exam_id": exam_id, "class_id": class_id, "subject_id": subject_id},
    )


def test_health_reports_open_sessions(client, session_id):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["open_sessions"] == 1


def test_unknown_session_uses_error_envelope(client):
    response = client.get(f"{API}/sessions/missing/rows")

    assert response.status_code == 404
    body = response.json()
    assert body["success"] is False
    assert body["error"]["code"] == "NOT_FOUND"
    assert body["error"]["message"] == "Session not found"


def test_selection_returns_rows(client, session_id):
    response = select(client, session_id)

    assert response.status_code == 200
    body = response.json()
    assert body["state"] == "idle"
    assert body["roster_source"] == "live"
    assert [r["student_name"] for r in body["rows"]] == ["Aisyah", "Bala", "Chong", "Dewi"]


def test_subject_outside_exam_is_rejected(client, session_id):
    response = select(client, session_id, exam_id=2, subject_id=SCIENCE)

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


def test_malformed_selection_is_a_validation_error(client, session_id):
    response = client.put(f"{API}/sessions/{session_id}/selection", json={"exam_id": 1})

    assert response.status_code == 422
    body = response.json()
    assert body["error"]["code"] == "VALIDATION_ERROR"
    assert body["error"]["details"]["errors"]


def test_fetch_failure_returns_bad_gateway(client, session_id, store):
    store.fail_fetches = 1

    response = select(client, session_id)

    assert response.status_code == 502
    assert response.json()["error"]["code"] == "FETCH_FAILED"
    assert response.json()["error"]["details"] == {"reason": "store unavailable"}


def test_edit_cell_returns_graded_dirty_row(client, session_id):
    select(client, session_id)

    response = client.patch(
        f"{API}/sessions/{session_id}/cells",
        json={"student_id": 1, "field": "mark", "value": 85},
    )

    assert response.status_code == 200
    row = response.json()
    assert row["mark"] == 85
    assert row["grade"] == "A"
    assert row["dirty"] is True
    rows = client.get(f"{API}/sessions/{session_id}/rows").json()
    assert rows["state"] == "editing"


def test_edit_unknown_field(client, session_id):
    select(client, session_id)

    response = client.patch(
        f"{API}/sessions/{session_id}/cells",
        json={"student_id": 1, "field": "height", "value": 1},
    )

    assert response.status_code == 422


def test_paste_then_save(client, session_id, store):
    select(client, session_id)

    pasted = client.post(
        f"{API}/sessions/{session_id}/paste",
        json={"start_index": 1, "raw_text": "72\nTH\n"},
    )
    saved = client.post(f"{API}/sessions/{session_id}/save")

    assert [r["mark"] for r in pasted.json()["rows"]] == [None, 72, None, None]
    assert saved.status_code == 200
    assert saved.json() == {"state": "saved", "saved_rows": 2, "last_error": None}
    assert store.stored_cell(1, MATHS, 2).grade == "A-"
    assert store.stored_cell(1, MATHS, 3).grade == "TH"


def test_paste_keeps_leading_blank_lines(client, session_id):
    select(client, session_id)

    response = client.post(
        f"{API}/sessions/{session_id}/paste",
        json={"raw_text": "\n91"},
    )

    assert [r["mark"] for r in response.json()["rows"]][:2] == [None, 91]


def test_save_failure_reports_error(client, session_id, store):
    select(client, session_id)
    client.patch(
        f"{API}/sessions/{session_id}/cells",
        json={"student_id": 1, "field": "mark", "value": 50},
    )
    store.fail_saves = 1

    response = client.post(f"{API}/sessions/{session_id}/save")

    assert response.status_code == 502
    assert response.json()["error"]["code"] == "SAVE_FAILED"
    rows = client.get(f"{API}/sessions/{session_id}/rows").json()
    assert rows["state"] == "error"
    assert rows["last_error"] == "database is down"
    assert rows["rows"][0]["mark"] == 50


def test_completion_and_weighted_summaries(client, session_id, store):
    store.opt_outs[1] = [OptOutEntry(student_id=4, subject_id=MATHS)]
    select(client, session_id)
    client.patch(
        f"{API}/sessions/{session_id}/cells",
        json={"student_id": 1, "field": "mark", "value": 80},
    )
    client.patch(
        f"{API}/sessions/{session_id}/cells",
        json={"student_id": 1, "field": "effort", "value": 90},
    )

    completion = client.get(f"{API}/sessions/{session_id}/completion").json()
    weighted = client.get(f"{API}/sessions/{session_id}/weighted").json()

    maths = next(s for s in completion["subjects"] if s["subject_id"] == MATHS)
    assert (maths["filled"], maths["total"]) == (2, 4)
    aisyah = next(s for s in weighted["students"] if s["student_id"] == 1)
    assert aisyah["final_score"] == pytest.approx(82.0)
    assert aisyah["final_display"] == "82.0"


def test_export_workbook(client, session_id):
    select(client, session_id)
    client.patch(
        f"{API}/sessions/{session_id}/cells",
        json={"student_id": 2, "field": "absent", "value": True},
    )

    response = client.get(f"{API}/sessions/{session_id}/export")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith(
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    )
    assert "attachment" in response.headers["content-disposition"]
    workbook = load_workbook(BytesIO(response.content))
    assert workbook.sheetnames == ["Results", "Completion", "Weighted"]


def test_export_without_selection_is_rejected(client, session_id):
    response = client.get(f"{API}/sessions/{session_id}/export")

    assert response.status_code == 422


def test_close_session(client, session_id, store):
    select(client, session_id)
    client.patch(
        f"{API}/sessions/{session_id}/cells",
        json={"student_id": 1, "field": "mark", "value": 64},
    )

    response = client.delete(f"{API}/sessions/{session_id}")

    assert response.json() == {"session_id": session_id, "all_saved": True}
    assert store.stored_cell(1, MATHS, 1).mark == 64
    assert client.get(f"{API}/sessions/{session_id}/rows").status_code == 404


def test_exam_roster_and_grading_scale(client):
    roster = client.get(f"{API}/exams/1/roster", params={"class_id": CLASS_A})
    scale = client.get(f"{API}/exams/1/grading-scale")

    assert roster.status_code == 200
    assert [s["student_id"] for s in roster.json()["students"]] == [1, 2, 3, 4]
    assert scale.json()["is_default"] is True
    assert scale.json()["bands"][0] == {"label": "A+", "min_mark": 90}


def test_unknown_exam_roster(client):
    response = client.get(f"{API}/exams/99/roster")

    assert response.status_code == 404
    assert response.json()["error"]["details"] == {"identifier": "99"}


@pytest.mark.parametrize("path", ["/exams/1/roster", "/exams/1/grading-scale"])
def test_exam_lookup_store_failure_is_bad_gateway(client, store, path):
    store.fail_fetches = 1

    response = client.get(f"{API}{path}")

    assert response.status_code == 502
    assert response.json()["error"]["code"] == "FETCH_FAILED"
    assert response.json()["error"]["details"] == {"reason": "store unavailable"}
