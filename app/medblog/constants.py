"""
Central constants for the blog.
"""
from __future__ import annotations

PAGE_SIZE = 10

POST_STATUSES = ("draft", "published")
RISK_LEVELS = ("low", "medium", "high")

# Creatable multi-select fields on the post form, stored as lists of strings.
MULTI_VALUE_FIELDS = ("tags", "medical_conditions", "symptoms", "treatments", "medications", "citations")

URL_FIELDS = ("canonical_url", "author_profile_url", "editorial_policy_url", "medical_board_url", "publisher_url")
INT_FIELDS = ("author_experience_yrs", "reading_time")
DATE_FIELDS = ("date_published", "date_modified", "medical_review_date", "last_medical_update")
BOOL_FIELDS = ("has_disclaimer", "no_index")

OPTIONAL_TEXT_FIELDS = (
    "image_alt",
    "seo_title",
    "seo_description",
    "primary_keyword",
    "og_image",
    "author",
    "author_credentials",
    "reviewed_by",
    "reviewer_credentials",
    "main_entity",
    "medical_specialty",
    "content_version",
    "intent",
    "publisher_name",
    "publisher_logo_url",
    "target_audience",
)

SEARCH_MIN_QUERY = 2
SEARCH_LIMIT = 10

WORDS_PER_MINUTE = 200

# Seeded by scripts/init_db.py
DEFAULT_CATEGORIES = ("Dermatology", "Mental Health", "Nutrition", "Pediatrics", "Women's Health")
