from backend.app.services.entity_validation import get_required_fields_config, validate_entity_completeness


def test_required_fields_per_entity():
    assert [f["field"] for f in get_required_fields_config("department")] == ["name", "description"]
    assert len(get_required_fields_config("position")) == 7
    assert get_required_fields_config("bot") == []


def test_complete_company():
    company = {
        "name": "Silk Road Foods",
        "email": "hr@silkroad.uz",
        "phone": "+998711234567",
        "city": "Tashkent",
        "country": "Uzbekistan",
        "description": "Food distribution",
    }
    result = validate_entity_completeness("company", company)
    assert result["is_complete"] is True
    assert result["completion_percentage"] == 100
    assert result["missing_fields_list"] == []


def test_blank_strings_count_as_missing():
    result = validate_entity_completeness("department", {"name": "Sales", "description": "   "})
    assert result["is_complete"] is False
    assert result["missing_fields"] == 1
    assert result["missing_fields_list"][0]["field"] == "description"


def test_position_location_counts_when_inherited():
    position = {"title": "Driver"}
    chain = [{"name": "Logistics"}, {"city": "Tashkent", "country": "Uzbekistan"}]

    without_chain = validate_entity_completeness("position", position)
    with_chain = validate_entity_completeness("position", position, chain)

    assert "location" in {f["field"] for f in without_chain["missing_fields_list"]}
    assert "location" not in {f["field"] for f in with_chain["missing_fields_list"]}
    assert with_chain["inherited_fields"]["location"] == "Tashkent, Uzbekistan"
    # Validation never writes the inherited values back.
    assert position == {"title": "Driver"}
