"""
Schemas module - Request/Response schemas for API endpoints.

Documents are stored as plain dicts in MongoDB; schemas describe the API
contract (what clients send) and the shared enums.
"""

from app.schemas.schemas import (
    ApplicationStatus,
    ExperienceLevel,
    JobStatus,
    JobType,
    UserRole,
)

__all__ = ["ApplicationStatus", "ExperienceLevel", "JobStatus", "JobType", "UserRole"]
