"""
Pydantic Schemas - Request/Response Validation

All API request and response schemas in one file for simplicity.
Profile and company endpoints take JSON or multipart bodies; both are
read into a dict and validated through the same models.
"""

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from typing import Annotated, Optional, List, Union
from datetime import datetime
from enum import Enum

from app.utils.sanitize import sanitize_text


# ============================================================
# ENUMS
# ============================================================

class UserRole(str, Enum):
    jobseeker = "jobseeker"
    employer = "employer"
    admin = "admin"


class JobType(str, Enum):
    full_time = "full-time"
    part_time = "part-time"
    contract = "contract"
    internship = "internship"
    temporary = "temporary"


class ExperienceLevel(str, Enum):
    intern = "intern"
    junior = "junior"
    mid = "mid"
    senior = "senior"
    lead = "lead"


class JobStatus(str, Enum):
    open = "open"
    closed = "closed"
    paused = "paused"


class ApplicationStatus(str, Enum):
    applied = "applied"
    shortlisted = "shortlisted"
    interview = "interview"
    rejected = "rejected"
    hired = "hired"


SELF_REGISTER_ROLES = {UserRole.jobseeker.value, UserRole.employer.value}

OTP_PATTERN = r"^\d{6}$"

# Free text is stored without markup; passwords, emails and ids are left alone
SafeText = Annotated[str, AfterValidator(sanitize_text)]


class StrictModel(BaseModel):
    """Unknown keys (e.g. "$where") are rejected rather than silently dropped."""
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


# ============================================================
# AUTH SCHEMAS
# ============================================================

class RegisterRequest(StrictModel):
    name: SafeText = Field(..., min_length=2, max_length=100)
    email: EmailStr = Field(..., max_length=254)
    password: str = Field(..., min_length=8, max_length=128)
    # Anything other than jobseeker/employer registers as jobseeker
    role: Optional[str] = None

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()


class LoginRequest(StrictModel):
    email: EmailStr
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()


class EmailRequest(StrictModel):
    email: EmailStr

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()


class VerifyEmailOtpRequest(EmailRequest):
    otp: str = Field(..., pattern=OTP_PATTERN)


class ResetPasswordRequest(EmailRequest):
    otp: str = Field(..., pattern=OTP_PATTERN)
    new_password: str = Field(..., min_length=8, max_length=128)


class ChangePasswordRequest(StrictModel):
    old_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, max_length=128)

    @model_validator(mode="after")
    def passwords_differ(self):
        if self.old_password == self.new_password:
            raise ValueError("new_password must differ from old_password")
        return self


class RefreshTokenRequest(BaseModel):
    refresh_token: Optional[str] = None


# ============================================================
# SHARED VALUE OBJECTS
# ============================================================

class LocationIn(StrictModel):
    city: Optional[SafeText] = Field(None, max_length=100)
    state: Optional[SafeText] = Field(None, max_length=100)
    country: Optional[SafeText] = Field(None, max_length=100)


class JobLocationIn(LocationIn):
    remote: Optional[bool] = None


class SalaryIn(StrictModel):
    min: Optional[float] = Field(None, ge=0)
    max: Optional[float] = Field(None, ge=0)
    currency: Optional[SafeText] = None

    @model_validator(mode="after")
    def min_not_above_max(self):
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("salary.min cannot be greater than salary.max")
        return self


# ============================================================
# USER SCHEMAS
# ============================================================

class ProfileUpdate(StrictModel):
    name: Optional[SafeText] = Field(None, max_length=100)
    bio: Optional[SafeText] = Field(None, max_length=2000)
    skills: Optional[Union[List[SafeText], SafeText]] = None
    location: Optional[LocationIn] = None

    @field_validator("skills")
    @classmethod
    def cap_skills(cls, v):
        if isinstance(v, list) and len(v) > 50:
            raise ValueError("at most 50 skills allowed")
        return v


# ============================================================
# COMPANY SCHEMAS
# ============================================================

class CompanyCreate(StrictModel):
    name: SafeText = Field(..., min_length=2, max_length=200)
    description: Optional[SafeText] = Field(None, max_length=5000)
    website: Optional[str] = None
    industry: Optional[SafeText] = Field(None, max_length=200)
    location: Optional[LocationIn] = None

    @field_validator("website")
    @classmethod
    def check_website(cls, v):
        if v and not v.lower().startswith(("http://", "https://")):
            raise ValueError("website must be an absolute http(s) URL")
        return v


class CompanyUpdate(CompanyCreate):
    name: Optional[SafeText] = Field(None, min_length=2, max_length=200)
    # Admin only: reassign the company to another user
    owner: Optional[str] = None


# ============================================================
# JOB SCHEMAS
# ============================================================

StringList = Optional[Union[List[SafeText], SafeText]]


class JobCreate(StrictModel):
    title: SafeText = Field(..., min_length=3, max_length=300)
    description: SafeText = Field(..., min_length=3, max_length=20000)
    company: str = Field(..., pattern=r"^[0-9a-fA-F]{24}$")
    requirements: StringList = None
    responsibilities: StringList = None
    skills: StringList = None
    salary: Optional[SalaryIn] = None
    job_type: Optional[JobType] = None
    experience_level: Optional[ExperienceLevel] = None
    location: Optional[JobLocationIn] = None
    expires_at: Optional[datetime] = None


class JobUpdate(StrictModel):
    title: Optional[SafeText] = Field(None, min_length=3, max_length=300)
    description: Optional[SafeText] = Field(None, min_length=3, max_length=20000)
    requirements: StringList = None
    responsibilities: StringList = None
    skills: StringList = None
    salary: Optional[SalaryIn] = None
    job_type: Optional[JobType] = None
    experience_level: Optional[ExperienceLevel] = None
    location: Optional[JobLocationIn] = None
    status: Optional[JobStatus] = None
    # "" or null clears the expiry
    expires_at: Optional[Union[datetime, str]] = None

    @model_validator(mode="after")
    def at_least_one_field(self):
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided to update the job")
        return self


class JobStatusUpdate(StrictModel):
    status: JobStatus


# ============================================================
# APPLICATION SCHEMAS
# ============================================================

class ApplicationCreate(StrictModel):
    cover_letter: Optional[SafeText] = Field(None, max_length=5000)
    resume_url: Optional[str] = None

    @field_validator("resume_url")
    @classmethod
    def check_resume_url(cls, v):
        if v and not v.lower().startswith(("http://", "https://")):
            raise ValueError("resume_url must be an absolute http(s) URL")
        return v


class ApplicationStatusUpdate(StrictModel):
    status: ApplicationStatus
    rejected_reason: Optional[SafeText] = Field(None, max_length=2000)
    # Parsed by the status transition so a bad value reports "Invalid interview_date"
    interview_date: Optional[str] = None

