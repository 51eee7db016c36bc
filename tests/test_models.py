import dataclasses

import pytest

from attendance_kiosk.models import DEPARTMENTS, FormData, IdentifyResult


def test_valid_form_has_no_errors():
    assert FormData(name="Al", employee_id="E-1", department="Engineering").validate() == {}


def test_empty_name_is_required():
    errors = FormData(name="", employee_id="E-1", department="Engineering").validate()
    assert errors == {"name": "Full name is required"}


def test_whitespace_name_counts_as_empty():
    errors = FormData(name="   ", employee_id="E-1", department="Engineering").validate()
    assert errors["name"] == "Full name is required"


def test_short_name():
    errors = FormData(name=" A ", employee_id="E-1", department="Engineering").validate()
    assert errors["name"] == "Name must be at least 2 characters"


@pytest.mark.parametrize("employee_id", ["E 1", "E_1", "E#1", "émp"])
def test_employee_id_charset(employee_id):
    errors = FormData(name="Alex", employee_id=employee_id, department="Sales").validate()
    assert errors["employee_id"] == "Employee ID can only contain letters, numbers, and hyphens"


def test_missing_employee_id_and_department():
    errors = FormData(name="Alex", employee_id="", department="Space Program").validate()
    assert errors == {
        "employee_id": "Employee ID is required",
        "department": "Please select a department",
    }


def test_form_is_frozen_and_normalised():
    form = FormData(name="  Alex Chen ", employee_id=" EMP-7 ", department=DEPARTMENTS[0])
    with pytest.raises(dataclasses.FrozenInstanceError):
        form.name = "Other"  # type: ignore[misc]
    assert form.normalised() == FormData(name="Alex Chen", employee_id="EMP-7", department="Engineering")


def test_identify_confidence_must_be_a_probability():
    assert IdentifyResult(success=True, confidence=0.93).confidence == 0.93
    with pytest.raises(ValueError):
        IdentifyResult(success=True, confidence=1.2)
