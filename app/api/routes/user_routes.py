"""
User Routes - registration, email verification, sessions and profiles.

POST  /users/register              - Create account, email a verification OTP
POST  /users/verify-email-otp      - Verify email, start a session
POST  /users/resend-verification   - Re-send verification OTP (rate limited)
POST  /users/login                 - Start a session
POST  /users/forgot-password       - Email a password reset OTP (rate limited)
POST  /users/reset-password        - Reset password with OTP
POST  /users/change-password       - Change password (authenticated)
POST  /users/session/refresh       - Rotate refresh token, issue access token
POST  /users/session/logout        - End the session
GET   /users/me                    - Own profile
PATCH /users/me                    - Update profile (JSON, or multipart with avatar/resume)
GET   /users                       - List users (admin)
GET   /users/{user_id}             - Full profile for self, public view otherwise
"""

import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, Request, Response
from pymongo.errors import PyMongoError

from app.core.auth import (
    clear_refresh_cookie,
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    generate_otp,
    get_current_user,
    get_optional_user,
    hash_password,
    hash_token,
    require_role,
    set_refresh_cookie,
    tokens_match,
    verify_password,
)
from app.core.config import get_settings
from app.core.errors import ApiError, envelope, error_response, not_found
from app.db.mongodb import get_collection, COLLECTIONS
from app.schemas.schemas import (
    ChangePasswordRequest,
    EmailRequest,
    LoginRequest,
    ProfileUpdate,
    RefreshTokenRequest,
    RegisterRequest,
    ResetPasswordRequest,
    SELF_REGISTER_ROLES,
    UserRole,
    VerifyEmailOtpRequest,
)
from app.services.email_service import send_password_reset_otp, send_verification_otp
from app.services.mongo_service import (
    Pagination,
    clean_str,
    get_pagination,
    paginate,
    parse_object_id,
    parse_sort,
    populate_one,
    populate,
    search_regex,
    serialize_doc,
    serialize_docs,
    split_list,
    utcnow,
)
from app.services.storage_service import delete_file, folder_for, upload_file
from app.utils.file_upload import (
    DEFAULT_DOCUMENT_TYPES,
    DEFAULT_IMAGE_TYPES,
    IMAGE_TRANSFORMATION,
    has_file,
    read_request_data,
    read_upload,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["Users"])

settings = get_settings()

# Never leaves the API
PRIVATE_FIELDS = {
    "password": 0,
    "refresh_token_hash": 0,
    "email_verification_otp_hash": 0,
    "email_verification_otp_expires": 0,
    "password_reset_otp_hash": 0,
    "password_reset_otp_expires": 0,
}

PUBLIC_FIELDS = ["name", "role", "avatar_url", "bio", "location", "skills", "company"]
COMPANY_SUMMARY = ["name", "slug", "logo_url", "verified"]
USER_SORTS = {"created_at", "-created_at", "name", "-name", "email", "-email"}

GENERIC_VERIFY_MESSAGE = "If an account exists, an OTP will be sent"
GENERIC_RESET_MESSAGE = GENERIC_VERIFY_MESSAGE


def _users():
    return get_collection(COLLECTIONS["users"])


def _start_session(user_id, response: Response) -> str:
    """Issue both tokens, store the refresh hash, set the cookie. Returns the access token."""
    access_token = create_access_token(user_id)
    refresh_token = create_refresh_token(user_id)
    _users().update_one(
        {"_id": user_id},
        {"$set": {"refresh_token_hash": hash_token(refresh_token), "updated_at": utcnow()}}
    )
    set_refresh_cookie(response, refresh_token)
    return access_token


def _incoming_refresh_token(request: Request, body: Optional[RefreshTokenRequest]):
    """Refresh token from cookie, then x-refresh-token header, then body. Returns (token, from_cookie)."""
    cookie_token = request.cookies.get(settings.refresh_cookie_name)
    if cookie_token:
        return cookie_token, True
    header_token = request.headers.get("x-refresh-token")
    if header_token:
        return header_token, False
    if body is not None and body.refresh_token:
        return body.refresh_token, False
    return None, False


def _recently_sent(last_sent_at, minutes: int) -> bool:
    return last_sent_at is not None and utcnow() - last_sent_at < timedelta(minutes=minutes)


def _with_company(user: dict) -> dict:
    return populate_one(user, "company", get_collection(COLLECTIONS["companies"]), COMPANY_SUMMARY)


# ============================================================
# REGISTRATION & VERIFICATION
# ============================================================

@router.post("/register", status_code=201)
async def register(data: RegisterRequest):
    """
    Register a new account and email a 6-digit verification OTP.

    - Admin cannot be self-assigned; any role outside jobseeker/employer becomes jobseeker
    - An unverified account whose OTP has expired is replaced
    """
    users = _users()
    now = utcnow()

    existing = users.find_one({"email": data.email})
    if existing:
        if existing.get("email_verified"):
            raise ApiError("Email already in use", 409)
        expires = existing.get("email_verification_otp_expires")
        if expires and expires > now:
            raise ApiError("Email already in use. Please verify your email.", 409)
        users.delete_one({"_id": existing["_id"]})
        logger.info("Removed stale unverified account for %s", data.email)

    role = UserRole(data.role) if data.role in SELF_REGISTER_ROLES else UserRole.jobseeker
    otp, otp_hash = generate_otp()

    doc = {
        "name": data.name,
        "email": data.email,
        "password": hash_password(data.password),
        "role": role.value,
        "avatar_url": None,
        "avatar_public_id": None,
        "resume_url": None,
        "resume_public_id": None,
        "company": None,
        "bio": None,
        "location": {"city": None, "state": None, "country": None},
        "skills": [],
        "email_verified": False,
        "email_verification_otp_hash": otp_hash,
        "email_verification_otp_expires": now + timedelta(minutes=settings.verify_otp_expires_min),
        "last_verification_sent_at": now,
        "refresh_token_hash": None,
        "created_at": now,
        "updated_at": now,
    }
    result = users.insert_one(doc)

    send_verification_otp(data.email, otp)
    logger.info("User registered: %s (%s)", data.email, role.value)

    return envelope(
        201,
        {"id": str(result.inserted_id), "email": data.email, "role": role.value},
        "User registered - OTP sent to email",
    )


@router.post("/verify-email-otp")
async def verify_email_otp(data: VerifyEmailOtpRequest, response: Response):
    """Verify the email OTP. On success the user is signed in."""
    user = _users().find_one({"email": data.email})
    if not user:
        raise ApiError("Invalid email or OTP", 400)
    if user.get("email_verified"):
        raise ApiError("Email already verified", 400)
    if not user.get("email_verification_otp_hash"):
        raise ApiError("No active OTP. Please request a new one.", 400)
    expires = user.get("email_verification_otp_expires")
    if not expires or expires < utcnow():
        raise ApiError("OTP expired. Please request a new one.", 400)
    if not tokens_match(data.otp, user["email_verification_otp_hash"]):
        raise ApiError("Invalid OTP", 400)

    _users().update_one(
        {"_id": user["_id"]},
        {
            "$set": {"email_verified": True, "updated_at": utcnow()},
            "$unset": {"email_verification_otp_hash": "", "email_verification_otp_expires": ""},
        }
    )
    access_token = _start_session(user["_id"], response)
    return envelope(200, {"access_token": access_token}, "Email verified successfully")


@router.post("/resend-verification")
async def resend_verification(data: EmailRequest):
    user = _users().find_one({"email": data.email})
    if not user:
        return envelope(200, None, GENERIC_VERIFY_MESSAGE)
    if user.get("email_verified"):
        return envelope(200, None, "Email already verified")
    if _recently_sent(user.get("last_verification_sent_at"), settings.resend_verify_minutes):
        raise ApiError("Too many requests. Try again later.", 429)

    now = utcnow()
    otp, otp_hash = generate_otp()
    _users().update_one(
        {"_id": user["_id"]},
        {"$set": {
            "email_verification_otp_hash": otp_hash,
            "email_verification_otp_expires": now + timedelta(minutes=settings.verify_otp_expires_min),
            "last_verification_sent_at": now,
            "updated_at": now,
        }}
    )
    send_verification_otp(data.email, otp)
    return envelope(200, None, GENERIC_VERIFY_MESSAGE)


# ============================================================
# LOGIN & PASSWORDS
# ============================================================

@router.post("/login")
async def login(data: LoginRequest, response: Response):
    user = _users().find_one({"email": data.email})
    if not user or not verify_password(data.password, user.get("password")):
        raise ApiError("Invalid email or password", 401)
    if not user.get("email_verified"):
        raise ApiError("Please verify your email to continue", 403)

    access_token = _start_session(user["_id"], response)
    logger.info("User logged in: %s", data.email)
    return envelope(200, {"access_token": access_token}, "Logged in successfully")


@router.post("/forgot-password")
async def forgot_password(data: EmailRequest):
    user = _users().find_one({"email": data.email})
    if not user:
        return envelope(200, None, GENERIC_RESET_MESSAGE)
    if _recently_sent(user.get("last_password_reset_sent_at"), settings.resend_reset_minutes):
        raise ApiError("Too many requests. Try again later.", 429)

    now = utcnow()
    otp, otp_hash = generate_otp()
    _users().update_one(
        {"_id": user["_id"]},
        {"$set": {
            "password_reset_otp_hash": otp_hash,
            "password_reset_otp_expires": now + timedelta(minutes=settings.reset_otp_expires_min),
            "last_password_reset_sent_at": now,
            "updated_at": now,
        }}
    )
    send_password_reset_otp(data.email, otp)
    return envelope(200, None, GENERIC_RESET_MESSAGE)


@router.post("/reset-password")
async def reset_password(data: ResetPasswordRequest):
    """Reset password with the emailed OTP. Existing sessions are revoked."""
    user = _users().find_one({"email": data.email})
    if not user:
        raise ApiError("Invalid OTP or email", 400)
    if not user.get("password_reset_otp_hash"):
        raise ApiError("No active password reset request", 400)
    expires = user.get("password_reset_otp_expires")
    if not expires or expires < utcnow():
        raise ApiError("OTP expired. Request a new one.", 400)
    if not tokens_match(data.otp, user["password_reset_otp_hash"]):
        raise ApiError("Invalid OTP", 400)

    _users().update_one(
        {"_id": user["_id"]},
        {
            "$set": {"password": hash_password(data.new_password), "updated_at": utcnow()},
            "$unset": {
                "password_reset_otp_hash": "",
                "password_reset_otp_expires": "",
                "refresh_token_hash": "",
            },
        }
    )
    logger.info("Password reset for %s", data.email)
    return envelope(200, None, "Password reset successful")


@router.post("/change-password")
async def change_password(data: ChangePasswordRequest, current: dict = Depends(get_current_user)):
    user = _users().find_one({"_id": current["id"]}, {"password": 1})
    if not user:
        raise not_found("User")
    if not verify_password(data.old_password, user.get("password")):
        raise ApiError("Incorrect old password", 401)

    _users().update_one(
        {"_id": current["id"]},
        {
            "$set": {"password": hash_password(data.new_password), "updated_at": utcnow()},
            "$unset": {"refresh_token_hash": ""},
        }
    )
    return envelope(200, None, "Password changed successfully")


# ============================================================
# SESSION
# ============================================================

@router.post("/session/refresh")
async def refresh_session(
    request: Request,
    response: Response,
    body: Optional[RefreshTokenRequest] = Body(None),
):
    """
    Rotate the refresh token.

    Presenting a token that no longer matches the stored hash means it was
    already rotated (possible theft), so the session is revoked.
    """
    token, from_cookie = _incoming_refresh_token(request, body)
    if not token:
        raise ApiError("No refresh token provided", 401)

    try:
        payload = decode_refresh_token(token)
    except ApiError as e:
        failed = error_response(e.status_code, e.message)
        clear_refresh_cookie(failed)
        return failed

    users = _users()
    user_id = parse_object_id(payload["sub"], "session")
    user = users.find_one({"_id": user_id}, {"refresh_token_hash": 1})
    if not user or not user.get("refresh_token_hash"):
        raise ApiError("Invalid session", 401)

    if not tokens_match(token, user["refresh_token_hash"]):
        users.update_one({"_id": user_id}, {"$unset": {"refresh_token_hash": ""}})
        logger.warning("Refresh token reuse detected for user %s; session revoked", user_id)
        raise ApiError("Refresh token mismatch", 401)

    access_token = create_access_token(user_id)
    new_refresh = create_refresh_token(user_id)
    # Conditional on the old hash so two concurrent refreshes cannot both win
    result = users.update_one(
        {"_id": user_id, "refresh_token_hash": user["refresh_token_hash"]},
        {"$set": {"refresh_token_hash": hash_token(new_refresh), "updated_at": utcnow()}}
    )
    if result.modified_count == 0:
        raise ApiError("Refresh token mismatch", 401)

    if from_cookie:
        set_refresh_cookie(response, new_refresh)
        return envelope(200, {"access_token": access_token}, "Access token refreshed")
    return envelope(200, {"access_token": access_token, "refresh_token": new_refresh}, "Tokens rotated")


@router.post("/session/logout")
async def logout(
    request: Request,
    response: Response,
    body: Optional[RefreshTokenRequest] = Body(None),
    current: Optional[dict] = Depends(get_optional_user),
):
    users = _users()
    if current:
        users.update_one({"_id": current["id"]}, {"$unset": {"refresh_token_hash": ""}})
    else:
        token, _ = _incoming_refresh_token(request, body)
        if not token:
            raise ApiError("No active session found", 400)
        try:
            payload = decode_refresh_token(token)
            users.update_one(
                {"_id": parse_object_id(payload["sub"]), "refresh_token_hash": hash_token(token)},
                {"$unset": {"refresh_token_hash": ""}}
            )
        except ApiError as e:
            logger.info("Logout with unusable refresh token: %s", e.message)

    clear_refresh_cookie(response)
    return envelope(200, None, "Logged out successfully")


# ============================================================
# PROFILE
# ============================================================

@router.get("/me")
async def get_me(current: dict = Depends(get_current_user)):
    user = _users().find_one({"_id": current["id"]}, PRIVATE_FIELDS)
    if not user:
        raise not_found("User")
    return envelope(200, {"user": serialize_doc(_with_company(user))}, "OK")


@router.patch("/me")
async def update_me(request: Request, current: dict = Depends(get_current_user)):
    """
    Update own profile from a JSON or multipart/form-data body.

    - skills: list, or comma separated string
    - location: object in JSON, `location.city` etc. in forms
    - avatar: JPEG, PNG or WEBP; resume: PDF (multipart only)
    - A blank text field clears it
    - A replaced avatar/resume is deleted from storage after the update
    """
    fields, files = await read_request_data(request, file_fields=("avatar", "resume"))
    data = ProfileUpdate.model_validate(fields)
    sent = data.model_fields_set
    avatar = files.get("avatar")
    resume = files.get("resume")

    update = {}
    if "name" in sent:
        if not data.name:
            raise ApiError("Name cannot be empty", 400)
        update["name"] = data.name
    if "bio" in sent:
        update["bio"] = clean_str(data.bio)
    if "skills" in sent:
        update["skills"] = split_list(data.skills)
    if "location" in sent and data.location is not None:
        for key in data.location.model_fields_set:
            update[f"location.{key}"] = clean_str(getattr(data.location, key))

    user = _users().find_one({"_id": current["id"]}, {"avatar_public_id": 1, "resume_public_id": 1})
    if not user:
        raise not_found("User")

    uploaded = []
    replaced = []
    if has_file(avatar):
        content = await read_upload(avatar, DEFAULT_IMAGE_TYPES, "Avatar")
        url, public_id = upload_file(
            content, folder_for("avatars", current["id"]), "image",
            IMAGE_TRANSFORMATION, "Failed to upload avatar"
        )
        uploaded.append((public_id, "image"))
        replaced.append((user.get("avatar_public_id"), "image"))
        update["avatar_url"] = url
        update["avatar_public_id"] = public_id
    if has_file(resume):
        content = await read_upload(resume, DEFAULT_DOCUMENT_TYPES, "Resume")
        url, public_id = upload_file(
            content, folder_for("resumes", current["id"]), "raw",
            failure_message="Failed to upload resume"
        )
        uploaded.append((public_id, "raw"))
        replaced.append((user.get("resume_public_id"), "raw"))
        update["resume_url"] = url
        update["resume_public_id"] = public_id

    if not update:
        raise ApiError("No fields provided to update", 400)

    update["updated_at"] = utcnow()
    try:
        _users().update_one({"_id": current["id"]}, {"$set": update})
    except PyMongoError:
        for public_id, resource_type in uploaded:
            delete_file(public_id, resource_type)
        raise

    for public_id, resource_type in replaced:
        delete_file(public_id, resource_type)

    fresh = _users().find_one({"_id": current["id"]}, PRIVATE_FIELDS)
    return envelope(200, {"user": serialize_doc(_with_company(fresh))}, "Profile updated successfully")


# ============================================================
# ADMIN LISTING / LOOKUP
# ============================================================

@router.get("")
async def list_users(
    role: Optional[str] = Query(None),
    company: Optional[str] = Query(None),
    q: Optional[str] = Query(None, description="Search in name or email"),
    sort: Optional[str] = Query(None),
    pagination: Pagination = Depends(get_pagination),
    admin: dict = Depends(require_role(UserRole.admin.value)),
):
    """List users (admin only)."""
    filter_ = {}
    if role:
        if role not in {r.value for r in UserRole}:
            raise ApiError("Invalid role filter", 400)
        filter_["role"] = role
    if company:
        filter_["company"] = parse_object_id(company, "company id")
    regex = search_regex(q)
    if regex:
        filter_["$or"] = [{"name": regex}, {"email": regex}]

    meta, docs = paginate(
        _users(), filter_, pagination,
        projection=PRIVATE_FIELDS,
        sort=parse_sort(sort, USER_SORTS),
    )
    populate(docs, "company", get_collection(COLLECTIONS["companies"]), COMPANY_SUMMARY)
    return envelope(200, {"meta": meta, "users": serialize_docs(docs)}, "Users fetched")


@router.get("/{user_id}")
async def get_user(user_id: str, current: dict = Depends(get_current_user)):
    """Self gets the full profile, everyone else the public fields."""
    oid = parse_object_id(user_id, "user id")
    if oid == current["id"]:
        projection = PRIVATE_FIELDS
    else:
        projection = {field: 1 for field in PUBLIC_FIELDS}
    user = _users().find_one({"_id": oid}, projection)
    if not user:
        raise not_found("User")
    return envelope(200, {"user": serialize_doc(_with_company(user))}, "OK")
