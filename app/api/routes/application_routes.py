"""
Application Routes

POST   /applications/{job_id}/apply       - Apply to a job (jobseeker)
GET    /applications/my                   - My applications (jobseeker)
GET    /applications/my/stats             - My applications per status (jobseeker)
GET    /applications/job/{job_id}         - Applications for a job (job creator/admin)
GET    /applications/job/{job_id}/stats   - Applications per status for a job (job creator/admin)
GET    /applications/{application_id}     - Application details (applicant, job creator, admin)
PATCH  /applications/{application_id}/status  - Move through the hiring flow (job creator/admin)
PATCH  /applications/{application_id}/viewed  - Mark as viewed (job creator/admin)
DELETE /applications/{application_id}     - Withdraw own application (jobseeker)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.core.auth import get_current_user, require_role
from app.core.errors import ApiError, envelope, forbidden, not_found
from app.db.mongodb import get_collection, COLLECTIONS
from app.schemas.schemas import (
    ApplicationCreate,
    ApplicationStatus,
    ApplicationStatusUpdate,
    JobStatus,
    UserRole,
)
from app.services.application_service import (
    APPLICATION_STATUSES,
    apply_status_transition,
    build_snapshot,
)
from app.services.mongo_service import (
    Pagination,
    bump_counter,
    clean_str,
    count_by_status,
    get_pagination,
    paginate,
    parse_object_id,
    parse_sort,
    populate,
    populate_one,
    search_regex,
    serialize_doc,
    serialize_docs,
    utcnow,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/applications", tags=["Applications"])

APPLICATION_SORTS = {"created_at", "-created_at", "status", "-status"}
INVALID_STATUS = f"Invalid status; allowed values are: {', '.join(APPLICATION_STATUSES)}"

JOB_SUMMARY = ["title", "slug", "status"]
COMPANY_SUMMARY = ["name", "slug", "logo_url"]
APPLICANT_SUMMARY = ["name", "email", "avatar_url", "skills"]

jobseeker_only = require_role(UserRole.jobseeker.value)
employer_or_admin = require_role(UserRole.employer.value, UserRole.admin.value)


def _applications():
    return get_collection(COLLECTIONS["applications"])


def _jobs():
    return get_collection(COLLECTIONS["jobs"])


def _parse_status_filter(raw: Optional[str]) -> Optional[str]:
    if raw is None or not raw.strip():
        return None
    if raw.strip() not in APPLICATION_STATUSES:
        raise ApiError(INVALID_STATUS, 400)
    return raw.strip()


def _is_admin(user: dict) -> bool:
    return user["role"] == UserRole.admin.value


def _load_job_for_manager(job_id, user: dict) -> dict:
    """Job must exist and be managed by the requester (its creator) unless admin."""
    job = _jobs().find_one({"_id": parse_object_id(job_id, "job id")}, {"created_by": 1, "title": 1})
    if not job:
        raise not_found("Job")
    if not _is_admin(user) and job.get("created_by") != user["id"]:
        raise forbidden("Forbidden: you do not manage this job")
    return job


def _load_application_for_manager(application_id: str, user: dict, action: str) -> dict:
    application = _applications().find_one({"_id": parse_object_id(application_id, "application id")})
    if not application:
        raise not_found("Application")
    if _is_admin(user):
        return application
    job = _jobs().find_one({"_id": application.get("job")}, {"created_by": 1})
    if not job or job.get("created_by") != user["id"]:
        raise forbidden(f"Forbidden: you are not allowed to {action} this application")
    return application


# ============================================================
# APPLY
# ============================================================

@router.post("/{job_id}/apply", status_code=201)
async def apply_to_job(
    job_id: str,
    data: Optional[ApplicationCreate] = Body(None),
    user: dict = Depends(jobseeker_only),
):
    """
    Apply to an open, unexpired job.

    Job title, company name, location, salary, type and level are copied
    into the application and never updated afterwards.
    """
    data = data or ApplicationCreate()
    job = _jobs().find_one({"_id": parse_object_id(job_id, "job id")})
    if not job:
        raise not_found("Job")
    if job.get("status") != JobStatus.open.value:
        raise ApiError("This job is not accepting applications", 400)
    if job.get("expires_at") and job["expires_at"] < utcnow():
        raise ApiError("This job posting has expired", 400)

    applications = _applications()
    # Fast path only; the unique (job, applicant) index is authoritative
    if applications.find_one({"job": job["_id"], "applicant": user["id"]}, {"_id": 1}):
        raise ApiError("You have already applied to this job", 409)

    resume_url = clean_str(data.resume_url)
    resume_public_id = None
    if not resume_url:
        profile = get_collection(COLLECTIONS["users"]).find_one(
            {"_id": user["id"]}, {"resume_url": 1, "resume_public_id": 1}
        ) or {}
        resume_url = profile.get("resume_url")
        resume_public_id = profile.get("resume_public_id")

    company = get_collection(COLLECTIONS["companies"]).find_one({"_id": job.get("company")}, {"name": 1})

    now = utcnow()
    doc = {
        "job": job["_id"],
        "company": job.get("company"),
        "applicant": user["id"],
        "resume_url": resume_url,
        "resume_public_id": resume_public_id,
        "cover_letter": clean_str(data.cover_letter),
        "status": ApplicationStatus.applied.value,
        "viewed": False,
        "rejected_reason": None,
        "interview_date": None,
        **build_snapshot(job, company),
        "created_at": now,
        "updated_at": now,
    }
    try:
        applications.insert_one(doc)
    except DuplicateKeyError:
        raise ApiError("You have already applied to this job", 409)

    bump_counter(_jobs(), job["_id"], "application_count", 1)
    logger.info("User %s applied to job %s", user["id"], job["_id"])
    return envelope(201, {"application": serialize_doc(doc)}, "Application submitted")


# ============================================================
# JOBSEEKER VIEWS
# ============================================================

@router.get("/my")
async def list_my_applications(
    q: Optional[str] = Query(None, description="Search job title or company name"),
    status: Optional[str] = Query(None),
    company: Optional[str] = Query(None),
    pagination: Pagination = Depends(get_pagination),
    user: dict = Depends(jobseeker_only),
):
    filter_ = {"applicant": user["id"]}
    application_status = _parse_status_filter(status)
    if application_status:
        filter_["status"] = application_status
    if company:
        filter_["company"] = parse_object_id(company, "company id")
    regex = search_regex(q)
    if regex:
        filter_["$or"] = [{"job_title_snapshot": regex}, {"company_name_snapshot": regex}]

    # Whether an employer has opened it is not shown to the applicant
    meta, docs = paginate(
        _applications(), filter_, pagination,
        projection={"viewed": 0},
        sort=parse_sort(None, APPLICATION_SORTS),
    )
    populate(docs, "job", _jobs(), JOB_SUMMARY)
    populate(docs, "company", get_collection(COLLECTIONS["companies"]), COMPANY_SUMMARY)
    return envelope(200, {"meta": meta, "applications": serialize_docs(docs)}, "OK")


@router.get("/my/stats")
async def my_application_stats(user: dict = Depends(jobseeker_only)):
    stats = count_by_status(_applications(), {"applicant": user["id"]}, APPLICATION_STATUSES)
    return envelope(200, {"stats": stats}, "OK")


# ============================================================
# EMPLOYER VIEWS
# ============================================================

@router.get("/job/{job_id}")
async def list_job_applications(
    job_id: str,
    status: Optional[str] = Query(None),
    sort: Optional[str] = Query(None),
    pagination: Pagination = Depends(get_pagination),
    user: dict = Depends(employer_or_admin),
):
    job = _load_job_for_manager(job_id, user)

    filter_ = {"job": job["_id"]}
    application_status = _parse_status_filter(status)
    if application_status:
        filter_["status"] = application_status

    meta, docs = paginate(
        _applications(), filter_, pagination,
        sort=parse_sort(sort, APPLICATION_SORTS),
    )
    populate(docs, "applicant", get_collection(COLLECTIONS["users"]), APPLICANT_SUMMARY)
    return envelope(200, {"meta": meta, "applications": serialize_docs(docs)}, "OK")


@router.get("/job/{job_id}/stats")
async def job_application_stats(job_id: str, user: dict = Depends(employer_or_admin)):
    job = _load_job_for_manager(job_id, user)
    stats = count_by_status(_applications(), {"job": job["_id"]}, APPLICATION_STATUSES)
    return envelope(200, {"stats": stats}, "OK")


# ============================================================
# SINGLE APPLICATION
# ============================================================

@router.get("/{application_id}")
async def get_application(application_id: str, user: dict = Depends(get_current_user)):
    """Visible to the applicant, the job's creator and admins."""
    application = _applications().find_one({"_id": parse_object_id(application_id, "application id")})
    if not application:
        raise not_found("Application")

    is_applicant = application.get("applicant") == user["id"]
    if not is_applicant and not _is_admin(user):
        job = _jobs().find_one({"_id": application.get("job")}, {"created_by": 1})
        if not job or job.get("created_by") != user["id"]:
            raise forbidden()

    populate_one(application, "job", _jobs(), JOB_SUMMARY)
    populate_one(application, "company", get_collection(COLLECTIONS["companies"]), COMPANY_SUMMARY)
    populate_one(application, "applicant", get_collection(COLLECTIONS["users"]), APPLICANT_SUMMARY)
    if is_applicant:
        application.pop("viewed", None)
    return envelope(200, {"application": serialize_doc(application)}, "OK")


@router.patch("/{application_id}/status")
async def update_application_status(
    application_id: str,
    data: ApplicationStatusUpdate,
    user: dict = Depends(employer_or_admin),
):
    """
    Change the status. Rejection clears the interview date, an interview
    clears the rejection reason, and the application counts as viewed.
    """
    application = _load_application_for_manager(application_id, user, "update")
    update = apply_status_transition(data.status.value, data.rejected_reason, data.interview_date)
    update["updated_at"] = utcnow()

    updated = _applications().find_one_and_update(
        {"_id": application["_id"]}, {"$set": update}, return_document=ReturnDocument.AFTER
    )
    logger.info("Application %s moved to %s by %s", application["_id"], update["status"], user["id"])
    return envelope(200, {"application": serialize_doc(updated)}, "Application status updated successfully")


@router.patch("/{application_id}/viewed")
async def mark_application_viewed(application_id: str, user: dict = Depends(employer_or_admin)):
    application = _load_application_for_manager(application_id, user, "mark as viewed")
    if not application.get("viewed"):
        application = _applications().find_one_and_update(
            {"_id": application["_id"]},
            {"$set": {"viewed": True, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
    return envelope(200, {"application": serialize_doc(application)}, "Application marked as viewed")


@router.delete("/{application_id}")
async def delete_application(application_id: str, user: dict = Depends(jobseeker_only)):
    """Withdraw an application. Only the applicant may delete it."""
    application = _applications().find_one(
        {"_id": parse_object_id(application_id, "application id")}, {"applicant": 1, "job": 1}
    )
    if not application:
        raise not_found("Application")
    if application.get("applicant") != user["id"]:
        raise forbidden("Forbidden: you can only delete your own applications")

    _applications().delete_one({"_id": application["_id"]})
    if application.get("job"):
        bump_counter(_jobs(), application["job"], "application_count", -1)
    return envelope(200, None, "Application deleted successfully")
