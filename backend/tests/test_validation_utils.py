"""
Input validation and error-handling helpers.
"""
import pytest
from fastapi import HTTPException

from backend.app.utils.validation import (
    validate_email,
    validate_password,
    validate_string_field,
    validate_integer_field,
    validate_role,
    validate_candidate_status,
    validate_entity_type,
    sanitize_filename,
)
from backend.app.utils.error_handlers import (
    AppError,
    NotFoundError,
    UpstreamServiceError,
    get_error_message,
    handle_database_error,
)


class TestEmailValidation:
    def test_valid_email(self):
        assert validate_email("test@example.com") == "test@example.com"
        assert validate_email("  HR@Example.UZ ") == "hr@example.uz"

    def test_invalid_email_format(self):
        with pytest.raises(HTTPException) as exc:
            validate_email("invalid")
        assert exc.value.status_code == 400
        assert "Invalid email format" in str(exc.value.detail)

    def test_empty_email(self):
        with pytest.raises(HTTPException) as exc:
            validate_email("")
        assert exc.value.status_code == 400


class TestPasswordValidation:
    def test_valid_password(self):
        validate_password("123456")

    def test_password_too_short(self):
        with pytest.raises(HTTPException) as exc:
            validate_password("12345")
        assert "at least 6" in str(exc.value.detail)


class TestStringFieldValidation:
    def test_whitespace_trimming(self):
        assert validate_string_field("  Tashkent  ", "City") == "Tashkent"

    def test_optional_field_none(self):
        assert validate_string_field(None, "City", required=False) is None

    def test_required_field_blank(self):
        with pytest.raises(HTTPException) as exc:
            validate_string_field("   ", "Company name")
        assert exc.value.status_code == 400

    def test_string_too_long(self):
        with pytest.raises(HTTPException):
            validate_string_field("x" * 300, "Title", max_length=255)


class TestIntegerFieldValidation:
    def test_string_to_integer_conversion(self):
        assert validate_integer_field("42", "ID", min_value=1) == 42

    def test_integer_too_small(self):
        with pytest.raises(HTTPException) as exc:
            validate_integer_field(0, "ID", min_value=1)
        assert "at least 1" in str(exc.value.detail)

    def test_invalid_string_to_integer(self):
        with pytest.raises(HTTPException):
            validate_integer_field("abc", "ID")


class TestRoleValidation:
    def test_valid_roles(self):
        assert validate_role("admin") == "admin"
        assert validate_role(" Recruiter ") == "recruiter"

    def test_candidate_is_not_a_user_role(self):
        with pytest.raises(HTTPException) as exc:
            validate_role("candidate")
        assert exc.value.status_code == 400


class TestCandidateStatusValidation:
    def test_default_status(self):
        assert validate_candidate_status(None) == "applied"

    def test_case_insensitive(self):
        assert validate_candidate_status("HIRED") == "hired"

    def test_invalid_status(self):
        with pytest.raises(HTTPException):
            validate_candidate_status("promoted")


class TestEntityTypeValidation:
    def test_plural_and_singular(self):
        assert validate_entity_type("companies") == "company"
        assert validate_entity_type("Department") == "department"
        assert validate_entity_type("positions") == "position"

    def test_unknown_type(self):
        with pytest.raises(HTTPException) as exc:
            validate_entity_type("candidates")
        assert exc.value.status_code == 400


class TestFilenameSanitization:
    def test_valid_filename(self):
        name = "contact-12_resume_2025-07-16_a1b2c3d4.pdf"
        assert sanitize_filename(name) == name

    def test_directory_traversal(self):
        result = sanitize_filename("../../etc/passwd")
        assert ".." not in result
        assert "/" not in result

    def test_remove_leading_dots(self):
        assert sanitize_filename(".hidden") == "hidden"

    def test_empty_filename(self):
        with pytest.raises(HTTPException):
            sanitize_filename("")


class TestErrorHandling:
    def test_get_predefined_message(self):
        assert "CRM" in get_error_message("crm_unavailable")

    def test_get_default_message(self):
        assert get_error_message("nope") == get_error_message("server_error")
        assert get_error_message("nope", "Custom") == "Custom"

    def test_app_error_status_codes(self):
        assert NotFoundError().status_code == 404
        assert UpstreamServiceError().status_code == 502
        assert isinstance(UpstreamServiceError(), AppError)

    def test_handle_duplicate_error(self):
        exc = handle_database_error(Exception("UNIQUE constraint failed: users.email"), "signup")
        assert exc.status_code == 409

    def test_handle_connection_error(self):
        exc = handle_database_error(Exception("connection refused"), "query")
        assert exc.status_code == 503

    def test_handle_generic_error(self):
        exc = handle_database_error(Exception("boom"), "query")
        assert exc.status_code == 500
