from backend.app.models.candidate import Candidate
from backend.app.models.company import Company
from backend.app.models.department import Department, DepartmentPosition
from backend.app.models.position import Position


def _seed_chain(db_session):
    company = Company(name="Silk Road Foods", city="Tashkent", country="Uzbekistan")
    db_session.add(company)
    db_session.flush()
    department = Department(name="Logistics", company_id=company.id)
    db_session.add(department)
    db_session.flush()
    position = Position(title="Driver")
    db_session.add(position)
    db_session.flush()
    db_session.add(DepartmentPosition(department_id=department.id, position_id=position.id))
    db_session.commit()
    return company, department, position


def test_company_validation_reports_missing_fields(client, admin_headers, db_session):
    company, _, _ = _seed_chain(db_session)

    r = client.get(f"/api/companies/{company.id}/validation", headers=admin_headers)
    assert r.status_code == 200, r.text
    validation = r.json()["validation"]
    assert validation["is_complete"] is False
    missing = {f["field"] for f in validation["missing_fields_list"]}
    assert missing == {"email", "phone", "description"}
    assert validation["total_fields"] == 6
    assert validation["completion_percentage"] == 50


def test_position_validation_counts_inherited_location(client, admin_headers, db_session):
    _, _, position = _seed_chain(db_session)

    r = client.get(f"/api/position/{position.id}/validation", headers=admin_headers)
    assert r.status_code == 200, r.text
    validation = r.json()["validation"]
    present = {f["field"] for f in validation["present_fields_list"]}
    assert "location" in present
    assert validation["inherited_fields"]["location"] == "Tashkent, Uzbekistan"


def test_validation_unknown_entity_type(client, admin_headers):
    r = client.get("/api/widgets/1/validation", headers=admin_headers)
    assert r.status_code == 400, r.text


def test_validation_missing_entity(client, admin_headers):
    r = client.get("/api/companies/999/validation", headers=admin_headers)
    assert r.status_code == 404, r.text


def test_patch_fields_fills_missing_and_ignores_empty(client, admin_headers, db_session):
    company, _, _ = _seed_chain(db_session)

    r = client.patch(
        f"/api/companies/{company.id}/fields",
        json={"email": "hr@silkroad.uz", "phone": "", "description": "Food distribution", "logo_url": "x"},
        headers=admin_headers,
    )
    assert r.status_code == 200, r.text
    validation = r.json()["validation"]
    assert [f["field"] for f in validation["missing_fields_list"]] == ["phone"]

    db_session.expire_all()
    refreshed = db_session.query(Company).filter(Company.id == company.id).first()
    assert refreshed.email == "hr@silkroad.uz"
    assert refreshed.phone is None
    assert refreshed.logo_url is None


def test_campaign_validation_lists_incomplete(client, admin_headers, db_session):
    company, department, position = _seed_chain(db_session)

    r = client.post(
        "/api/validation/campaign",
        json={"companies": [company.id], "departments": [department.id], "positions": [position.id, 999]},
        headers=admin_headers,
    )
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["has_incomplete_entities"] is True
    assert [e["id"] for e in data["entities"]["companies"]] == [company.id]
    assert [e["id"] for e in data["entities"]["positions"]] == [position.id]


def test_stats_counts_and_match_rate(client, recruiter_headers, db_session):
    _seed_chain(db_session)
    db_session.add_all(
        [
            Candidate(full_name="A", status="hired"),
            Candidate(full_name="B", status="matched"),
            Candidate(full_name="C", status="applied"),
            Candidate(full_name="D", status="rejected"),
        ]
    )
    db_session.commit()

    r = client.get("/api/stats", headers=recruiter_headers)
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["companies"] == 1
    assert data["departments"] == 1
    assert data["positions"] == 1
    assert data["candidates"] == 4
    assert data["match_rate"] == "50%"


def test_stats_empty_database(client, recruiter_headers):
    r = client.get("/api/stats", headers=recruiter_headers)
    assert r.status_code == 200, r.text
    assert r.json()["match_rate"] == "0%"
