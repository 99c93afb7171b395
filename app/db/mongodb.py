"""
MongoDB Connection Utility

MongoDB stores every entity of the job board:
- users: accounts, credentials, OTP and session state
- companies: company profiles owned by employers
- jobs: job postings
- applications: job applications with snapshots of the job at apply time

Uniqueness rules (email, slugs, one application per job per applicant)
live in indexes, so they hold even under concurrent requests.
"""
import logging

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database
from pymongo.collection import Collection
from app.core.config import get_settings

logger = logging.getLogger(__name__)

# Global client (connection pooling handled internally by pymongo)
_client: MongoClient = None
_db: Database = None


def get_mongo_client() -> MongoClient:
    """Get or create MongoDB client (singleton pattern)"""
    global _client
    if _client is None:
        _client = MongoClient(get_settings().mongodb_uri)
    return _client


def get_mongo_db() -> Database:
    """Get the job board database"""
    global _db
    if _db is None:
        client = get_mongo_client()
        _db = client[get_settings().mongodb_db]
    return _db


def get_collection(name: str) -> Collection:
    """
    Get a specific collection.
    Use the COLLECTIONS constants rather than literal names.
    """
    db = get_mongo_db()
    return db[name]


def test_mongo_connection() -> bool:
    """
    Test if MongoDB is reachable.
    Returns True if connection successful, False otherwise.
    """
    try:
        client = get_mongo_client()
        # ping command checks connection
        client.admin.command('ping')
        return True
    except Exception as e:
        logger.warning("MongoDB connection failed: %s", e)
        return False


# Collection name constants (avoid typos)
COLLECTIONS = {
    "users": "users",
    "companies": "companies",
    "jobs": "jobs",
    "applications": "applications",
}


def init_mongo_indexes():
    """
    Create indexes for uniqueness and query performance.
    Call this once during app startup.
    """
    db = get_mongo_db()

    users = db[COLLECTIONS["users"]]
    users.create_index("email", unique=True)
    users.create_index("role")
    users.create_index("company")
    users.create_index([("created_at", DESCENDING)])
    users.create_index("name")

    companies = db[COLLECTIONS["companies"]]
    companies.create_index("name", unique=True)
    companies.create_index("slug", unique=True)
    companies.create_index("owner")

    jobs = db[COLLECTIONS["jobs"]]
    jobs.create_index("slug", unique=True)
    jobs.create_index("company")
    jobs.create_index("status")
    jobs.create_index([
        ("company", ASCENDING),
        ("job_type", ASCENDING),
        ("location.city", ASCENDING),
        ("status", ASCENDING)
    ])

    applications = db[COLLECTIONS["applications"]]
    # Authoritative guard: one application per job per applicant
    applications.create_index([
        ("job", ASCENDING),
        ("applicant", ASCENDING)
    ], unique=True)
    applications.create_index([("applicant", ASCENDING), ("created_at", DESCENDING)])
    applications.create_index([("job", ASCENDING), ("status", ASCENDING)])

    logger.info("MongoDB indexes created successfully")
