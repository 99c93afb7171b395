"""
Job Routes

POST   /jobs                   - Create job posting (employer/admin)
GET    /jobs                   - List jobs with filters (public, open only by default)
GET    /jobs/my                - Jobs posted by me (employer) or anyone (admin)
GET    /jobs/{id_or_slug}      - Job details (public)
PATCH  /jobs/{job_id}          - Update job (creator/admin)
PATCH  /jobs/{job_id}/status   - Open, close or pause a job (creator/admin)
DELETE /jobs/{job_id}          - Delete job (creator/admin)
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.core.auth import require_role, require_role_or_owner
from app.core.errors import ApiError, envelope, forbidden, not_found
from app.db.mongodb import get_collection, COLLECTIONS
from app.schemas.schemas import (
    ExperienceLevel,
    JobCreate,
    JobStatus,
    JobStatusUpdate,
    JobType,
    JobUpdate,
    UserRole,
)
from app.services.mongo_service import (
    Pagination,
    bump_counter,
    clean_str,
    get_pagination,
    is_object_id,
    paginate,
    parse_bool,
    parse_object_id,
    parse_sort,
    populate,
    populate_one,
    search_regex,
    serialize_doc,
    serialize_docs,
    split_list,
    to_naive_utc,
    utcnow,
)
from app.utils.slugify import generate_unique_slug

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["Jobs"])

JOB_STATUSES = [s.value for s in JobStatus]
JOB_SORTS = {"created_at", "-created_at", "title", "-title", "salary.min", "-salary.min"}
INVALID_STATUS = "Invalid status; allowed values are open, closed, paused"
DEFAULT_CURRENCY = "INR"

COMPANY_SUMMARY = ["name", "slug", "logo_url"]
CREATOR_SUMMARY = ["name", "avatar_url"]
LIST_PROJECTION = {
    "title": 1, "slug": 1, "status": 1, "job_type": 1, "experience_level": 1,
    "location": 1, "salary": 1, "company": 1, "skills": 1, "created_at": 1,
    "expires_at": 1, "application_count": 1,
}

employer_or_admin = require_role(UserRole.employer.value, UserRole.admin.value)
creator_or_admin = require_role_or_owner(
    [UserRole.admin.value], COLLECTIONS["jobs"], owner_field="created_by", param="job_id"
)


def _jobs():
    return get_collection(COLLECTIONS["jobs"])


def _parse_number(raw: Optional[str], name: str) -> Optional[float]:
    if raw is None or str(raw).strip() == "":
        return None
    try:
        return float(raw)
    except ValueError:
        raise ApiError(f"Invalid {name}", 400)


def _parse_status(raw: Optional[str]) -> Optional[str]:
    if raw is None or not raw.strip():
        return None
    if raw.strip() not in JOB_STATUSES:
        raise ApiError(INVALID_STATUS, 400)
    return raw.strip()


def _parse_expires_at(raw) -> Optional[datetime]:
    """Blank clears the expiry; unparseable dates are a 400."""
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return to_naive_utc(raw)
    raw = str(raw).strip()
    if not raw:
        return None
    try:
        return to_naive_utc(datetime.fromisoformat(raw))
    except ValueError:
        raise ApiError("Invalid expires_at date", 400)


def _location_doc(location) -> dict:
    data = location.model_dump() if location else {}
    return {
        "city": clean_str(data.get("city")),
        "state": clean_str(data.get("state")),
        "country": clean_str(data.get("country")),
        "remote": bool(data.get("remote") or False),
    }


def _salary_doc(salary) -> dict:
    data = salary.model_dump() if salary else {}
    return {
        "min": data.get("min"),
        "max": data.get("max"),
        "currency": clean_str(data.get("currency")) or DEFAULT_CURRENCY,
    }


@router.post("", status_code=201)
async def create_job(data: JobCreate, user: dict = Depends(employer_or_admin)):
    """
    Create a job posting.

    Employers may only post for a company they own; admins for any company.
    """
    company_id = parse_object_id(data.company, "company id")
    companies = get_collection(COLLECTIONS["companies"])
    company = companies.find_one({"_id": company_id}, {"owner": 1, "name": 1})
    if not company:
        raise not_found("Company")
    if user["role"] == UserRole.employer.value and company.get("owner") != user["id"]:
        raise forbidden("You are not allowed to post jobs for this company")

    jobs = _jobs()
    now = utcnow()
    doc = {
        "title": data.title,
        "slug": generate_unique_slug(jobs, data.title),
        "description": data.description,
        "requirements": split_list(data.requirements),
        "responsibilities": split_list(data.responsibilities),
        "salary": _salary_doc(data.salary),
        "job_type": (data.job_type or JobType.full_time).value,
        "experience_level": (data.experience_level or ExperienceLevel.junior).value,
        "location": _location_doc(data.location),
        "skills": split_list(data.skills),
        "company": company_id,
        "created_by": user["id"],
        "application_count": 0,
        "status": JobStatus.open.value,
        "expires_at": _parse_expires_at(data.expires_at),
        "created_at": now,
        "updated_at": now,
    }
    try:
        jobs.insert_one(doc)
    except DuplicateKeyError as e:
        keys = list(((e.details or {}).get("keyValue") or {}).keys())
        raise ApiError(f"Job {keys[0] if keys else 'duplicate'} already exists", 409)

    bump_counter(companies, company_id, "meta.jobs_count", 1)
    logger.info("Job created: %s for company %s", doc["slug"], company_id)
    return envelope(201, {"job": serialize_doc(doc)}, "Job created")


@router.get("")
async def list_jobs(
    q: Optional[str] = Query(None, description="Search in title or description"),
    company: Optional[str] = Query(None),
    job_type: Optional[str] = Query(None),
    experience_level: Optional[str] = Query(None),
    city: Optional[str] = Query(None, alias="location.city"),
    state: Optional[str] = Query(None, alias="location.state"),
    country: Optional[str] = Query(None, alias="location.country"),
    remote: Optional[str] = Query(None),
    min_salary: Optional[str] = Query(None),
    max_salary: Optional[str] = Query(None),
    status: Optional[str] = Query(None, description="Defaults to open"),
    sort: Optional[str] = Query(None),
    pagination: Pagination = Depends(get_pagination),
):
    """List jobs. Only open jobs are returned unless `status` is given."""
    filter_ = {"status": _parse_status(status) or JobStatus.open.value}

    regex = search_regex(q)
    if regex:
        filter_["$or"] = [{"title": regex}, {"description": regex}]
    if company:
        filter_["company"] = parse_object_id(company, "company id")
    if job_type:
        filter_["job_type"] = job_type.strip()
    if experience_level:
        filter_["experience_level"] = experience_level.strip()
    for field, value in (
        ("location.city", city),
        ("location.state", state),
        ("location.country", country),
    ):
        condition = search_regex(value)
        if condition:
            filter_[field] = condition
    is_remote = parse_bool(remote, "remote")
    if is_remote is not None:
        filter_["location.remote"] = is_remote

    low = _parse_number(min_salary, "min_salary")
    high = _parse_number(max_salary, "max_salary")
    if low is not None and high is not None and low > high:
        raise ApiError("min_salary cannot be greater than max_salary", 400)
    if low is not None:
        filter_["salary.min"] = {"$gte": low}
    if high is not None:
        filter_["salary.max"] = {"$lte": high}

    meta, docs = paginate(
        _jobs(), filter_, pagination,
        projection=LIST_PROJECTION,
        sort=parse_sort(sort, JOB_SORTS),
    )
    populate(docs, "company", get_collection(COLLECTIONS["companies"]), COMPANY_SUMMARY)
    return envelope(200, {"meta": meta, "jobs": serialize_docs(docs)}, "OK")


@router.get("/my")
async def list_my_jobs(
    status: Optional[str] = Query(None),
    company: Optional[str] = Query(None),
    job_type: Optional[str] = Query(None),
    experience_level: Optional[str] = Query(None),
    owner: Optional[str] = Query(None, description="Admin only: filter by creator"),
    pagination: Pagination = Depends(get_pagination),
    user: dict = Depends(employer_or_admin),
):
    """Employers see their own postings; admins see all, optionally by `owner`."""
    filter_ = {}
    if user["role"] == UserRole.employer.value:
        filter_["created_by"] = user["id"]
    elif owner:
        filter_["created_by"] = parse_object_id(owner, "owner id")

    job_status = _parse_status(status)
    if job_status:
        filter_["status"] = job_status
    if company:
        filter_["company"] = parse_object_id(company, "company id")
    if job_type:
        filter_["job_type"] = job_type.strip()
    if experience_level:
        filter_["experience_level"] = experience_level.strip()

    meta, docs = paginate(
        _jobs(), filter_, pagination,
        projection=LIST_PROJECTION,
        sort=parse_sort(None, JOB_SORTS),
    )
    populate(docs, "company", get_collection(COLLECTIONS["companies"]), COMPANY_SUMMARY)
    return envelope(200, {"meta": meta, "jobs": serialize_docs(docs)}, "OK")


@router.get("/{id_or_slug}")
async def get_job(id_or_slug: str):
    job = None
    if is_object_id(id_or_slug):
        job = _jobs().find_one({"_id": parse_object_id(id_or_slug)})
    if job is None:
        job = _jobs().find_one({"slug": id_or_slug.strip().lower()})
    if job is None:
        raise not_found("Job")

    populate_one(job, "company", get_collection(COLLECTIONS["companies"]), COMPANY_SUMMARY)
    populate_one(job, "created_by", get_collection(COLLECTIONS["users"]), CREATOR_SUMMARY)
    return envelope(200, {"job": serialize_doc(job)}, "OK")


@router.patch("/{job_id}")
async def update_job(job_id: str, data: JobUpdate, user: dict = Depends(creator_or_admin)):
    """Partial update. Changing the title regenerates the slug."""
    oid = parse_object_id(job_id, "job id")
    jobs = _jobs()
    job = jobs.find_one({"_id": oid})
    if not job:
        raise not_found("Job")

    fields = data.model_fields_set
    update = {}
    if "title" in fields and data.title:
        if data.title != job.get("title"):
            update["title"] = data.title
            update["slug"] = generate_unique_slug(jobs, data.title)
    if "description" in fields and data.description:
        update["description"] = data.description
    for name in ("requirements", "responsibilities", "skills"):
        if name in fields:
            update[name] = split_list(getattr(data, name))
    if "salary" in fields:
        salary = _salary_doc(data.salary)
        current = job.get("salary") or {}
        if data.salary is not None:
            given = data.salary.model_fields_set
            for key in ("min", "max"):
                if key not in given:
                    salary[key] = current.get(key)
            if "currency" not in given:
                salary["currency"] = current.get("currency") or DEFAULT_CURRENCY
        if salary["min"] is not None and salary["max"] is not None and salary["min"] > salary["max"]:
            raise ApiError("salary.min cannot be greater than salary.max", 400)
        update["salary"] = salary
    if "job_type" in fields and data.job_type:
        update["job_type"] = data.job_type.value
    if "experience_level" in fields and data.experience_level:
        update["experience_level"] = data.experience_level.value
    if "location" in fields and data.location is not None:
        for key in data.location.model_fields_set:
            value = getattr(data.location, key)
            update[f"location.{key}"] = bool(value) if key == "remote" else clean_str(value)
    if "status" in fields and data.status:
        update["status"] = data.status.value
    if "expires_at" in fields:
        update["expires_at"] = _parse_expires_at(data.expires_at)

    if not update:
        return envelope(200, {"job": serialize_doc(job)}, "Nothing to update")

    update["updated_at"] = utcnow()
    try:
        updated = jobs.find_one_and_update(
            {"_id": oid}, {"$set": update}, return_document=ReturnDocument.AFTER
        )
    except DuplicateKeyError as e:
        keys = list(((e.details or {}).get("keyValue") or {}).keys())
        raise ApiError(f"Job {keys[0] if keys else 'duplicate'} already exists", 409)

    return envelope(200, {"job": serialize_doc(updated)}, "Job updated successfully")


@router.patch("/{job_id}/status")
async def update_job_status(job_id: str, data: JobStatusUpdate, user: dict = Depends(creator_or_admin)):
    oid = parse_object_id(job_id, "job id")
    job = _jobs().find_one_and_update(
        {"_id": oid},
        {"$set": {"status": data.status.value, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not job:
        raise not_found("Job")
    return envelope(200, {"job": serialize_doc(job)}, "Job status updated successfully")


@router.delete("/{job_id}")
async def delete_job(job_id: str, user: dict = Depends(creator_or_admin)):
    """Delete a job. Existing applications keep their snapshots."""
    oid = parse_object_id(job_id, "job id")
    job = _jobs().find_one({"_id": oid}, {"company": 1})
    if not job:
        raise not_found("Job")

    _jobs().delete_one({"_id": oid})
    if job.get("company"):
        bump_counter(get_collection(COLLECTIONS["companies"]), job["company"], "meta.jobs_count", -1)

    logger.info("Job %s deleted by %s", oid, user["id"])
    return envelope(200, None, "Job deleted successfully")
