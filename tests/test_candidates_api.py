from backend.app.models.candidate import Candidate


def test_candidate_crud(client, admin_headers):
    r = client.post(
        "/api/candidates",
        json={"full_name": "Aziz Karimov", "phone": "90 123 45 67", "city": "Tashkent"},
        headers=admin_headers,
    )
    assert r.status_code == 201, r.text
    candidate = r.json()["candidate"]
    assert candidate["phone"] == "+998901234567"
    assert candidate["status"] == "applied"
    assert candidate["files"] == {"resume": None, "diploma": None, "voice": []}

    r = client.patch(f"/api/candidates/{candidate['id']}", json={"status": "Screening"}, headers=admin_headers)
    assert r.status_code == 200, r.text
    assert r.json()["candidate"]["status"] == "screening"

    r = client.delete(f"/api/candidates/{candidate['id']}", headers=admin_headers)
    assert r.status_code == 200, r.text
    assert client.get(f"/api/candidates/{candidate['id']}", headers=admin_headers).status_code == 404


def test_candidate_invalid_status_rejected(client, admin_headers):
    r = client.post("/api/candidates", json={"full_name": "Aziz", "status": "promoted"}, headers=admin_headers)
    assert r.status_code == 400, r.text


def test_candidate_unknown_position_rejected(client, admin_headers):
    r = client.post("/api/candidates", json={"full_name": "Aziz", "position_id": 77}, headers=admin_headers)
    assert r.status_code == 404, r.text


def test_candidate_list_filters(client, recruiter_headers, db_session):
    db_session.add_all(
        [
            Candidate(full_name="Dilnoza Rahimova", phone="+998901111111", status="hired"),
            Candidate(full_name="Bekzod Aliyev", phone="+998902222222", status="applied"),
        ]
    )
    db_session.commit()

    r = client.get("/api/candidates?status=hired", headers=recruiter_headers)
    assert r.status_code == 200, r.text
    assert [c["full_name"] for c in r.json()["candidates"]] == ["Dilnoza Rahimova"]

    r = client.get("/api/candidates?q=2222", headers=recruiter_headers)
    assert [c["full_name"] for c in r.json()["candidates"]] == ["Bekzod Aliyev"]


def test_candidate_voice_urls_keep_question_positions(client, recruiter_headers, db_session):
    candidate = Candidate(full_name="Voice Only Q2")
    candidate.voice_urls = ["", "https://files.example.test/uploads/telegram-files/contact-7_voice_q2_2025-07-16_abcd1234.ogg"]
    db_session.add(candidate)
    db_session.commit()

    r = client.get(f"/api/candidates/{candidate.id}", headers=recruiter_headers)
    assert r.status_code == 200, r.text
    voice = r.json()["candidate"]["files"]["voice"]
    assert voice[0] == ""
    assert voice[1].endswith("_voice_q2_2025-07-16_abcd1234.ogg")
