"""Tests for stripping markup from text input."""

import pytest

from app.schemas.schemas import CompanyCreate, JobCreate, LoginRequest
from app.utils.sanitize import sanitize_text


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("<b>Senior</b> Dev", "Senior Dev"),
        ("AT&T", "AT&T"),
        ("salary < 10 lakh", "salary < 10 lakh"),
        ("line one\nline two", "line one\nline two"),
        ("", ""),
    ],
)
def test_sanitize_text(raw, expected):
    assert sanitize_text(raw) == expected


def test_script_tags_removed():
    cleaned = sanitize_text("<script>alert(1)</script>Hello")
    assert "<script" not in cleaned
    assert cleaned.endswith("Hello")


def test_encoded_tags_do_not_survive():
    cleaned = sanitize_text("&lt;script&gt;alert(1)&lt;/script&gt;")
    assert "<script" not in cleaned


def test_non_strings_untouched():
    assert sanitize_text(None) is None


def test_schemas_clean_free_text():
    company = CompanyCreate(name="<i>Acme</i> Corp", description="<img src=x onerror=alert(1)>Widgets")
    assert company.name == "Acme Corp"
    assert company.description == "Widgets"

    job = JobCreate(
        title="Dev <b>Lead</b>",
        description="Build things",
        company="5f1d7f3e9b1e8b3a2c4d5e6f",
        skills=["<u>python</u>", "go"],
    )
    assert job.title == "Dev Lead"
    assert job.skills == ["python", "go"]


def test_passwords_are_not_altered():
    login = LoginRequest(email="a@example.com", password="<b>pa&ss</b>")
    assert login.password == "<b>pa&ss</b>"
