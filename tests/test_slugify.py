"""Tests for slug generation."""

import mongomock
import pytest

from app.utils.slugify import SlugGenerationError, generate_unique_slug, slugify_title


@pytest.mark.parametrize(
    "title, expected",
    [
        ("  Senior Python Dev (Remote)! ", "senior-python-dev-remote"),
        ("C++ / Rust Engineer", "c-rust-engineer"),
        ("already-slugged--title", "already-slugged-title"),
        ("---", ""),
    ],
)
def test_slugify_title(title, expected):
    assert slugify_title(title) == expected


@pytest.fixture
def collection():
    return mongomock.MongoClient().db.jobs


def test_unique_slug_appends_counter(collection):
    assert generate_unique_slug(collection, "Data Engineer") == "data-engineer"
    collection.insert_many([{"slug": "data-engineer"}, {"slug": "data-engineer-1"}])
    assert generate_unique_slug(collection, "Data Engineer") == "data-engineer-2"


def test_empty_title_falls_back(collection):
    assert generate_unique_slug(collection, "!!!") == "post"


def test_gives_up_after_max_attempts(collection):
    collection.insert_many([{"slug": "busy"}] + [{"slug": f"busy-{i}"} for i in range(1, 4)])
    with pytest.raises(SlugGenerationError):
        generate_unique_slug(collection, "Busy", max_attempts=3)
