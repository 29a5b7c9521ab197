from datetime import datetime, timedelta, timezone

from exam_platform.core.constants import ExamStateEnum
from tests.helpers.asserts import api_call, error_code
from tests.helpers.exam_data import option_ids, question_ids


def _start(client, exam_id, headers):
    response = api_call(client, "POST", f"/exams/{exam_id}/attempts", headers=headers, expected_status=201)
    return response.json()["data"]


def test_full_attempt_flow_scores_after_worker_runs(client, exam_factory, auth_headers, worker_pool):
    exam = exam_factory()
    headers = auth_headers(101)
    single, multiple, numerical = question_ids(exam)

    attempt = _start(client, exam.id, headers)
    assert attempt["status"] == "in_progress"
    assert attempt["score"] is None

    loaded = api_call(client, "GET", f"/exams/{exam.id}/attempt", headers=headers).json()["data"]
    assert loaded["attempt_id"] == attempt["id"]
    assert 0 < loaded["remaining_seconds"] <= 3600
    assert [q["id"] for q in loaded["questions"]] == [single, multiple, numerical]
    assert all("is_correct" not in o for q in loaded["questions"] for o in q["options"])
    assert loaded["saved_answers"] == []

    base = f"/exams/attempts/{attempt['id']}/answers"
    api_call(client, "PUT", f"{base}/{single}", headers=headers,
             json={"selected_option_ids": option_ids(exam, 0, correct=False)[:1]})
    api_call(client, "PUT", f"{base}/{single}", headers=headers,
             json={"selected_option_ids": option_ids(exam, 0, correct=True)})
    api_call(client, "PUT", f"{base}/{multiple}", headers=headers,
             json={"selected_option_ids": list(reversed(option_ids(exam, 1, correct=True)))})
    api_call(client, "PUT", f"{base}/{numerical}", headers=headers, json={"numerical_answer": 9.805})

    loaded = api_call(client, "GET", f"/exams/{exam.id}/attempt", headers=headers).json()["data"]
    saved = {a["question_id"]: a for a in loaded["saved_answers"]}
    assert saved[single]["selected_option_ids"] == option_ids(exam, 0, correct=True)
    assert saved[multiple]["selected_option_ids"] == sorted(option_ids(exam, 1, correct=True))

    submitted = api_call(client, "POST", f"/exams/{exam.id}/submit", headers=headers).json()
    assert submitted["message"] == "Exam submitted successfully"
    assert submitted["data"]["status"] == "submitted"
    assert submitted["data"]["already_submitted"] is False
    assert submitted["data"]["score_pending"] is True

    score_url = f"/exams/attempts/{attempt['id']}/score"
    pending = api_call(client, "GET", score_url, headers=headers).json()["data"]
    assert pending["score_state"] == "pending"
    assert pending["score"] is None

    assert worker_pool.process_next().score == 12.0

    scored = api_call(client, "GET", score_url, headers=headers).json()["data"]
    assert scored["score_state"] == "scored"
    assert scored["score"] == 12.0


def test_submit_twice_reports_already_submitted(client, exam_factory, auth_headers):
    exam = exam_factory()
    headers = auth_headers(102)
    _start(client, exam.id, headers)

    api_call(client, "POST", f"/exams/{exam.id}/submit", headers=headers)
    again = api_call(client, "POST", f"/exams/{exam.id}/submit", headers=headers).json()

    assert again["message"] == "Exam already submitted"
    assert again["data"]["already_submitted"] is True
    assert again["data"]["status"] == "submitted"


def test_answers_are_rejected_after_submission(client, exam_factory, auth_headers):
    exam = exam_factory()
    headers = auth_headers(103)
    attempt = _start(client, exam.id, headers)
    api_call(client, "POST", f"/exams/{exam.id}/submit", headers=headers)

    response = api_call(client, "PUT", f"/exams/attempts/{attempt['id']}/answers/{question_ids(exam)[2]}",
                        headers=headers, json={"numerical_answer": 1.0}, expected_status=409)
    assert error_code(response) == "ATTEMPT_CLOSED"

    api_call(client, "GET", f"/exams/{exam.id}/attempt", headers=headers, expected_status=403)


def test_expired_attempt_is_auto_submitted_on_load(client, exam_factory, attempt_factory, auth_headers):
    exam = exam_factory(duration_minutes=30)
    attempt = attempt_factory(exam, user_id=104, started_at=datetime.now(timezone.utc) - timedelta(minutes=40))
    headers = auth_headers(104)

    response = api_call(client, "GET", f"/exams/{exam.id}/attempt", headers=headers, expected_status=403)
    assert response.json()["error"]["message"] == "Time over. Exam auto-submitted."

    score = api_call(client, "GET", f"/exams/attempts/{attempt.id}/score", headers=headers).json()["data"]
    assert score["status"] == "auto_submitted"
    assert score["score_state"] == "pending"


def test_expired_attempt_is_auto_submitted_on_save(client, exam_factory, attempt_factory, auth_headers):
    exam = exam_factory(duration_minutes=30)
    attempt = attempt_factory(exam, user_id=105, started_at=datetime.now(timezone.utc) - timedelta(minutes=40))
    headers = auth_headers(105)

    api_call(client, "PUT", f"/exams/attempts/{attempt.id}/answers/{question_ids(exam)[2]}",
             headers=headers, json={"numerical_answer": 9.81}, expected_status=403)

    score = api_call(client, "GET", f"/exams/attempts/{attempt.id}/score", headers=headers).json()["data"]
    assert score["status"] == "auto_submitted"


def test_submit_after_deadline_is_recorded_as_auto_submitted(client, exam_factory, attempt_factory, auth_headers):
    exam = exam_factory(duration_minutes=30)
    attempt_factory(exam, user_id=106, started_at=datetime.now(timezone.utc) - timedelta(minutes=40))

    data = api_call(client, "POST", f"/exams/{exam.id}/submit", headers=auth_headers(106)).json()["data"]

    assert data["status"] == "auto_submitted"
    assert data["already_submitted"] is False


def test_start_rules(client, exam_factory, auth_headers):
    headers = auth_headers(107)
    now = datetime.now(timezone.utc)

    api_call(client, "POST", "/exams/9999/attempts", headers=headers, expected_status=404)

    draft = exam_factory(state=ExamStateEnum.DRAFT)
    api_call(client, "POST", f"/exams/{draft.id}/attempts", headers=headers, expected_status=400)

    upcoming = exam_factory(start_time=now + timedelta(hours=1), end_time=now + timedelta(hours=3))
    api_call(client, "POST", f"/exams/{upcoming.id}/attempts", headers=headers, expected_status=400)

    open_exam = exam_factory()
    _start(client, open_exam.id, headers)
    api_call(client, "POST", f"/exams/{open_exam.id}/attempts", headers=headers, expected_status=409)


def test_answer_payload_validation(client, exam_factory, auth_headers):
    exam = exam_factory()
    headers = auth_headers(108)
    attempt = _start(client, exam.id, headers)
    single, _, numerical = question_ids(exam)
    base = f"/exams/attempts/{attempt['id']}/answers"

    api_call(client, "PUT", f"{base}/{single}", headers=headers,
             json={"selected_option_ids": [1], "numerical_answer": 2.0}, expected_status=422)
    api_call(client, "PUT", f"{base}/{single}", headers=headers,
             json={"selected_option_ids": option_ids(exam, 0)[:2]}, expected_status=400)
    api_call(client, "PUT", f"{base}/{single}", headers=headers,
             json={"selected_option_ids": option_ids(exam, 1)[:1]}, expected_status=400)
    api_call(client, "PUT", f"{base}/{numerical}", headers=headers,
             json={"selected_option_ids": []}, expected_status=400)
    api_call(client, "PUT", f"{base}/424242", headers=headers,
             json={"numerical_answer": 1.0}, expected_status=404)

    # An empty selection is a valid way to clear an answer.
    api_call(client, "PUT", f"{base}/{single}", headers=headers, json={"selected_option_ids": []})


def test_attempts_are_private_to_their_owner(client, exam_factory, auth_headers):
    exam = exam_factory()
    attempt = _start(client, exam.id, auth_headers(109))
    intruder = auth_headers(110)

    api_call(client, "PUT", f"/exams/attempts/{attempt['id']}/answers/{question_ids(exam)[2]}",
             headers=intruder, json={"numerical_answer": 1.0}, expected_status=403)
    api_call(client, "GET", f"/exams/attempts/{attempt['id']}/score", headers=intruder, expected_status=403)


def test_invalid_token_is_rejected(client, exam_factory):
    exam = exam_factory()
    api_call(client, "POST", f"/exams/{exam.id}/attempts",
             headers={"Authorization": "Bearer not-a-jwt"}, expected_status=401)
