"""
Slug helpers for companies and jobs.

    slugify_title("  Senior Python Dev (Remote)! ")  -> "senior-python-dev-remote"

generate_unique_slug() appends -1, -2, ... until the slug is free. The
unique index on `slug` still decides under concurrent inserts.
"""

import re

from pymongo.collection import Collection

MAX_SLUG_ATTEMPTS = 1000
FALLBACK_SLUG = "post"


class SlugGenerationError(RuntimeError):
    pass


def slugify_title(title) -> str:
    slug = str(title).lower().strip()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def generate_unique_slug(collection: Collection, title, max_attempts: int = MAX_SLUG_ATTEMPTS) -> str:
    base = slugify_title(title) or FALLBACK_SLUG
    slug = base
    attempt = 0

    while collection.find_one({"slug": slug}, {"_id": 1}) is not None:
        attempt += 1
        if attempt > max_attempts:
            raise SlugGenerationError(f"Unable to generate unique slug for '{base}'")
        slug = f"{base}-{attempt}"

    return slug
