"""
Application Service - status transitions and apply-time snapshots.

Status flow (no enforced ordering, any status may follow any other):

    applied -> shortlisted | interview | rejected | hired

Side effects of a transition:
- rejected:  rejected_reason set, interview_date cleared
- interview: interview_date set (optional), rejected_reason cleared
- other:     both cleared
- always:    viewed = True
"""

from datetime import datetime
from typing import Optional, Any

from app.core.errors import ApiError
from app.schemas.schemas import ApplicationStatus
from app.services.mongo_service import clean_str, to_naive_utc

APPLICATION_STATUSES = [s.value for s in ApplicationStatus]


def parse_interview_date(raw: Any) -> Optional[datetime]:
    """Blank means no date; anything unparseable is a 400."""
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return to_naive_utc(raw)
    raw = str(raw).strip()
    if not raw:
        return None
    try:
        return to_naive_utc(datetime.fromisoformat(raw))
    except (ValueError, OverflowError):
        raise ApiError("Invalid interview_date", 400)


def apply_status_transition(
    status: str,
    rejected_reason: Optional[str] = None,
    interview_date: Any = None,
) -> dict:
    """
    Build the $set document for a status change.

    Pure function so the rules can be tested without a database.
    """
    status = ApplicationStatus(status).value
    update = {"status": status, "viewed": True}

    if status == ApplicationStatus.rejected.value:
        update["rejected_reason"] = clean_str(rejected_reason)
    else:
        update["rejected_reason"] = None

    if status == ApplicationStatus.interview.value:
        update["interview_date"] = parse_interview_date(interview_date)
    else:
        update["interview_date"] = None

    return update


def build_snapshot(job: dict, company: Optional[dict]) -> dict:
    """Copy the job details an applicant saw at apply time."""
    location = job.get("location") or {}
    salary = job.get("salary") or {}
    return {
        "job_title_snapshot": job.get("title"),
        "company_name_snapshot": (company or {}).get("name"),
        "job_location_snapshot": {
            "city": location.get("city"),
            "state": location.get("state"),
            "country": location.get("country"),
            "remote": bool(location.get("remote", False)),
        },
        "job_type_snapshot": job.get("job_type"),
        "experience_level_snapshot": job.get("experience_level"),
        "job_salary_snapshot": {
            "min": salary.get("min"),
            "max": salary.get("max"),
            "currency": salary.get("currency"),
        },
    }
