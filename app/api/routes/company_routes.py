"""
Company Routes

POST   /companies                    - Create company (employer/admin, JSON or multipart with logo)
GET    /companies                    - List companies (public)
GET    /companies/{id_or_slug}       - Company details (public)
PATCH  /companies/{company_id}       - Update company (owner/admin, JSON or multipart with logo)
DELETE /companies/{company_id}       - Delete company (owner/admin)
POST   /companies/{company_id}/verify    - Mark verified (admin)
POST   /companies/{company_id}/unverify  - Remove verification (admin)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, UploadFile
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.core.auth import require_role, require_role_or_owner
from app.core.errors import ApiError, envelope, not_found
from app.db.mongodb import get_collection, COLLECTIONS
from app.schemas.schemas import CompanyCreate, CompanyUpdate, UserRole
from app.services.mongo_service import (
    Pagination,
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
    utcnow,
)
from app.services.storage_service import delete_file, folder_for, upload_file
from app.utils.file_upload import DEFAULT_IMAGE_TYPES, has_file, read_request_data, read_upload
from app.utils.slugify import generate_unique_slug

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/companies", tags=["Companies"])

COMPANY_SORTS = {"created_at", "-created_at", "name", "-name"}
OWNER_SUMMARY = ["name", "avatar_url"]
LOGO_TRANSFORMATION = [{"width": 1024, "crop": "limit"}]

employer_or_admin = require_role(UserRole.employer.value, UserRole.admin.value)
owner_or_admin = require_role_or_owner(
    [UserRole.admin.value], COLLECTIONS["companies"], owner_field="owner", param="company_id"
)


def _companies():
    return get_collection(COLLECTIONS["companies"])


def _duplicate_company(exc: DuplicateKeyError) -> ApiError:
    details = exc.details or {}
    keys = list((details.get("keyValue") or details.get("keyPattern") or {}).keys())
    return ApiError(f"Company {keys[0] if keys else 'duplicate'} already exists", 409)


async def _upload_logo(logo: Optional[UploadFile]):
    """Returns (url, public_id) or None when no logo was sent."""
    if not has_file(logo):
        return None
    content = await read_upload(logo, DEFAULT_IMAGE_TYPES, "Logo")
    return upload_file(
        content, folder_for("companies"), "image",
        LOGO_TRANSFORMATION, "Failed to upload logo"
    )


def _with_owner(company: dict) -> dict:
    return populate_one(company, "owner", get_collection(COLLECTIONS["users"]), OWNER_SUMMARY)


@router.post("", status_code=201)
async def create_company(request: Request, user: dict = Depends(employer_or_admin)):
    """
    Create a company. The creator becomes its owner.

    Accepts JSON or multipart/form-data (with an optional `logo` file;
    nested fields as `location.city` etc.). An employer without a company
    is linked to the new one.
    """
    fields, files = await read_request_data(request, file_fields=("logo",))
    data = CompanyCreate.model_validate(fields)
    companies = _companies()
    if companies.find_one({"name": data.name}, {"_id": 1}):
        raise ApiError("Company name already exists", 409)

    location = data.location.model_dump() if data.location else {}
    now = utcnow()
    doc = {
        "name": data.name,
        "slug": generate_unique_slug(companies, data.name),
        "description": clean_str(data.description),
        "website": clean_str(data.website),
        "logo_url": None,
        "logo_public_id": None,
        "location": {
            "city": clean_str(location.get("city")),
            "state": clean_str(location.get("state")),
            "country": clean_str(location.get("country")),
        },
        "industry": clean_str(data.industry),
        "owner": user["id"],
        "verified": False,
        "meta": {"jobs_count": 0},
        "created_at": now,
        "updated_at": now,
    }

    uploaded = await _upload_logo(files.get("logo"))
    if uploaded:
        doc["logo_url"], doc["logo_public_id"] = uploaded

    try:
        result = companies.insert_one(doc)
    except DuplicateKeyError as e:
        if uploaded:
            delete_file(uploaded[1], "image")
        raise _duplicate_company(e)

    if user["role"] == UserRole.employer.value and not user.get("company"):
        get_collection(COLLECTIONS["users"]).update_one(
            {"_id": user["id"]}, {"$set": {"company": result.inserted_id, "updated_at": now}}
        )

    logger.info("Company created: %s by %s", doc["slug"], user["id"])
    return envelope(201, {"company": serialize_doc(doc)}, "Company created")


@router.get("")
async def list_companies(
    q: Optional[str] = Query(None, description="Search in name or description"),
    owner: Optional[str] = Query(None),
    industry: Optional[str] = Query(None),
    verified: Optional[str] = Query(None),
    city: Optional[str] = Query(None, alias="location.city"),
    state: Optional[str] = Query(None, alias="location.state"),
    country: Optional[str] = Query(None, alias="location.country"),
    sort: Optional[str] = Query(None),
    pagination: Pagination = Depends(get_pagination),
):
    filter_ = {}
    regex = search_regex(q)
    if regex:
        filter_["$or"] = [{"name": regex}, {"description": regex}]
    if owner:
        filter_["owner"] = parse_object_id(owner, "owner id")
    for field, value in (
        ("industry", industry),
        ("location.city", city),
        ("location.state", state),
        ("location.country", country),
    ):
        condition = search_regex(value)
        if condition:
            filter_[field] = condition
    is_verified = parse_bool(verified, "verified")
    if is_verified is not None:
        filter_["verified"] = is_verified

    meta, docs = paginate(
        _companies(), filter_, pagination,
        sort=parse_sort(sort, COMPANY_SORTS),
    )
    populate(docs, "owner", get_collection(COLLECTIONS["users"]), OWNER_SUMMARY)
    return envelope(200, {"meta": meta, "companies": serialize_docs(docs)}, "Companies fetched")


@router.get("/{id_or_slug}")
async def get_company(id_or_slug: str):
    """Lookup by ObjectId first, then by slug."""
    company = None
    if is_object_id(id_or_slug):
        company = _companies().find_one({"_id": parse_object_id(id_or_slug)})
    if company is None:
        company = _companies().find_one({"slug": id_or_slug.strip().lower()})
    if company is None:
        raise not_found("Company")
    return envelope(200, {"company": serialize_doc(_with_owner(company))}, "OK")


@router.patch("/{company_id}")
async def update_company(company_id: str, request: Request, user: dict = Depends(owner_or_admin)):
    """
    Update a company from a JSON or multipart/form-data body.

    - Only the fields that are sent change; a blank text field clears it
    - A name change regenerates the slug
    - A new `logo` file replaces the old one
    - Only an admin may reassign `owner`
    """
    oid = parse_object_id(company_id, "company id")
    companies = _companies()
    company = companies.find_one({"_id": oid})
    if not company:
        raise not_found("Company")

    fields, files = await read_request_data(request, file_fields=("logo",))
    data = CompanyUpdate.model_validate(fields)
    sent = data.model_fields_set
    if not sent and "logo" not in files:
        raise ApiError("No fields provided to update", 400)

    update = {}
    if "name" in sent:
        if not data.name:
            raise ApiError("Company name cannot be empty", 400)
        if data.name != company["name"]:
            update["name"] = data.name
            update["slug"] = generate_unique_slug(companies, data.name)
    for field in ("description", "website", "industry"):
        if field in sent:
            update[field] = clean_str(getattr(data, field))
    if "location" in sent and data.location is not None:
        for key in data.location.model_fields_set:
            update[f"location.{key}"] = clean_str(getattr(data.location, key))

    if "owner" in sent:
        if user["role"] != UserRole.admin.value:
            raise ApiError("Only an admin can change the company owner", 403)
        new_owner = parse_object_id(data.owner, "owner id")
        if not get_collection(COLLECTIONS["users"]).find_one({"_id": new_owner}, {"_id": 1}):
            raise not_found("Owner")
        update["owner"] = new_owner

    uploaded = await _upload_logo(files.get("logo"))
    if uploaded:
        update["logo_url"], update["logo_public_id"] = uploaded

    update["updated_at"] = utcnow()
    try:
        updated = companies.find_one_and_update(
            {"_id": oid}, {"$set": update}, return_document=ReturnDocument.AFTER
        )
    except DuplicateKeyError as e:
        if uploaded:
            delete_file(uploaded[1], "image")
        raise _duplicate_company(e)

    if uploaded and company.get("logo_public_id"):
        delete_file(company["logo_public_id"], "image")

    return envelope(200, {"company": serialize_doc(updated)}, "Company updated successfully")


@router.delete("/{company_id}")
async def delete_company(company_id: str, user: dict = Depends(owner_or_admin)):
    oid = parse_object_id(company_id, "company id")
    company = _companies().find_one({"_id": oid}, {"logo_public_id": 1})
    if not company:
        raise not_found("Company")

    _companies().delete_one({"_id": oid})
    get_collection(COLLECTIONS["users"]).update_many({"company": oid}, {"$set": {"company": None}})
    delete_file(company.get("logo_public_id"), "image")

    logger.info("Company %s deleted by %s", oid, user["id"])
    return envelope(200, None, "Company deleted successfully")


def _set_verified(company_id: str, verified: bool):
    oid = parse_object_id(company_id, "company id")
    company = _companies().find_one({"_id": oid})
    if not company:
        raise not_found("Company")
    if bool(company.get("verified")) == verified:
        return company, False
    company = _companies().find_one_and_update(
        {"_id": oid},
        {"$set": {"verified": verified, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    return company, True


@router.post("/{company_id}/verify")
async def verify_company(company_id: str, admin: dict = Depends(require_role(UserRole.admin.value))):
    company, changed = _set_verified(company_id, True)
    message = "Company verified successfully" if changed else "Company already verified"
    return envelope(200, {"company": serialize_doc(company)}, message)


@router.post("/{company_id}/unverify")
async def unverify_company(company_id: str, admin: dict = Depends(require_role(UserRole.admin.value))):
    company, changed = _set_verified(company_id, False)
    message = "Company has been unverified" if changed else "Company already unverified"
    return envelope(200, {"company": serialize_doc(company)}, message)
