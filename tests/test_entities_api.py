def _create_company(client, headers, **overrides):
    body = {"name": "Silk Road Foods", "city": "Tashkent", "country": "Uzbekistan"}
    body.update(overrides)
    r = client.post("/api/companies", json=body, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()["company"]


def _create_department(client, headers, company_id, name="Operations"):
    r = client.post("/api/departments", json={"name": name, "company_id": company_id}, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()["department"]


def _create_position(client, headers, department_ids, **overrides):
    body = {"title": "Warehouse Manager", "department_ids": department_ids}
    body.update(overrides)
    r = client.post("/api/positions", json=body, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()


def test_company_crud(client, admin_headers):
    company = _create_company(client, admin_headers, email="HR@SilkRoad.uz")
    assert company["email"] == "hr@silkroad.uz"

    r = client.get(f"/api/companies/{company['id']}", headers=admin_headers)
    assert r.status_code == 200, r.text
    assert r.json()["company"]["name"] == "Silk Road Foods"

    r = client.patch(f"/api/companies/{company['id']}", json={"phone": "+998711234567"}, headers=admin_headers)
    assert r.status_code == 200, r.text
    assert r.json()["company"]["phone"] == "+998711234567"

    r = client.get("/api/companies", headers=admin_headers)
    assert [c["id"] for c in r.json()["companies"]] == [company["id"]]

    r = client.delete(f"/api/companies/{company['id']}", headers=admin_headers)
    assert r.status_code == 200, r.text
    assert client.get(f"/api/companies/{company['id']}", headers=admin_headers).status_code == 404


def test_company_name_required(client, admin_headers):
    r = client.post("/api/companies", json={"name": "  "}, headers=admin_headers)
    assert r.status_code == 400, r.text


def test_department_requires_existing_company(client, admin_headers):
    r = client.post("/api/departments", json={"name": "Sales", "company_id": 999}, headers=admin_headers)
    assert r.status_code == 404, r.text


def test_departments_filtered_by_company(client, admin_headers):
    a = _create_company(client, admin_headers, name="Alpha")
    b = _create_company(client, admin_headers, name="Beta")
    _create_department(client, admin_headers, a["id"], name="Sales")
    _create_department(client, admin_headers, b["id"], name="Support")

    r = client.get(f"/api/departments?company_id={a['id']}", headers=admin_headers)
    assert r.status_code == 200, r.text
    assert [d["name"] for d in r.json()["departments"]] == ["Sales"]


def test_position_inherits_location_from_company(client, admin_headers):
    company = _create_company(client, admin_headers)
    department = _create_department(client, admin_headers, company["id"])

    data = _create_position(client, admin_headers, [department["id"]])
    position = data["position"]
    assert position["location"] == "Tashkent, Uzbekistan"
    assert position["city"] == "Tashkent"
    assert position["country"] == "Uzbekistan"
    assert position["company_name"] == "Silk Road Foods"
    assert data["inherited_fields"]["location"] == "Tashkent, Uzbekistan"


def test_position_keeps_explicit_city(client, admin_headers):
    company = _create_company(client, admin_headers)
    department = _create_department(client, admin_headers, company["id"])

    position = _create_position(client, admin_headers, [department["id"]], city="Samarkand")["position"]
    assert position["city"] == "Samarkand"
    assert position["country"] == "Uzbekistan"


def test_position_without_department_keeps_empty_location(client, admin_headers):
    position = _create_position(client, admin_headers, [])["position"]
    assert position["location"] is None
    assert position["department_ids"] == []


def test_position_update_links_department_and_inherits(client, admin_headers):
    company = _create_company(client, admin_headers)
    department = _create_department(client, admin_headers, company["id"])
    position = _create_position(client, admin_headers, [])["position"]

    r = client.patch(
        f"/api/positions/{position['id']}",
        json={"department_ids": [department["id"]]},
        headers=admin_headers,
    )
    assert r.status_code == 200, r.text
    updated = r.json()["position"]
    assert updated["department_ids"] == [department["id"]]
    assert updated["location"] == "Tashkent, Uzbekistan"


def test_position_unknown_department_rejected(client, admin_headers):
    r = client.post("/api/positions", json={"title": "Driver", "department_ids": [42]}, headers=admin_headers)
    assert r.status_code == 404, r.text


def test_position_inherit_endpoints(client, admin_headers, db_session):
    from backend.app.models.department import DepartmentPosition
    from backend.app.models.position import Position

    company = _create_company(client, admin_headers)
    department = _create_department(client, admin_headers, company["id"])

    # Linked directly in the DB, bypassing the API's inheritance.
    position = Position(title="Accountant")
    db_session.add(position)
    db_session.flush()
    db_session.add(DepartmentPosition(department_id=department["id"], position_id=position.id))
    db_session.commit()

    r = client.post(f"/api/positions/{position.id}/inherit", headers=admin_headers)
    assert r.status_code == 200, r.text
    assert r.json()["updated"] is True
    assert r.json()["inherited_fields"]["location"] == "Tashkent, Uzbekistan"

    r = client.post(f"/api/positions/{position.id}/inherit", headers=admin_headers)
    assert r.json()["updated"] is False

    r = client.post("/api/positions/inherit", headers=admin_headers)
    assert r.status_code == 200, r.text
    assert r.json()["total"] == 1
    assert r.json()["updated"] == 0

    assert client.post("/api/positions/999/inherit", headers=admin_headers).status_code == 404


def test_company_location_change_reaches_positions_without_location(client, admin_headers):
    company = _create_company(client, admin_headers, city=None, country=None)
    department = _create_department(client, admin_headers, company["id"])
    position = _create_position(client, admin_headers, [department["id"]])["position"]
    assert position["location"] is None

    r = client.patch(f"/api/companies/{company['id']}", json={"city": "Bukhara"}, headers=admin_headers)
    assert r.status_code == 200, r.text

    r = client.get(f"/api/positions/{position['id']}", headers=admin_headers)
    assert r.json()["position"]["location"] == "Bukhara"


def test_recruiter_can_read_but_not_write(client, admin_headers, recruiter_headers):
    company = _create_company(client, admin_headers)
    assert client.get("/api/companies", headers=recruiter_headers).status_code == 200

    r = client.patch(f"/api/companies/{company['id']}", json={"name": "Other"}, headers=recruiter_headers)
    assert r.status_code == 403, r.text
