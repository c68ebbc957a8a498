"""
Controlled vocabularies used by extraction and normalization.

Upstream sources describe applicants and topics in free text; these
tables fold the common spellings into canonical values.
"""

ENTITY_TYPES = [
    "nonprofit",
    "small_business",
    "individual",
    "for_profit",
    "educational",
    "government",
    "tribal",
]

# Canonical entity type -> spellings seen upstream
ENTITY_TYPE_MAP: dict[str, list[str]] = {
    "nonprofit": ["nonprofit", "non-profit", "non profit", "501c3", "501(c)(3)", "ngo", "charity"],
    "small_business": ["small_business", "small business", "smb", "sme"],
    "for_profit": ["for_profit", "for-profit", "business", "corporation", "company"],
    "individual": ["individual", "person", "citizen"],
    "educational": ["educational", "education", "school", "university", "college", "k-12"],
    "government": ["government", "municipal", "city", "county", "state", "federal", "public body"],
    "tribal": ["tribal", "native american", "tribal organization", "indian tribe"],
}

CATEGORY_MAP: dict[str, list[str]] = {
    "agriculture": ["agriculture", "farming", "food"],
    "arts_culture": ["arts", "culture", "humanities"],
    "business": ["business", "commerce", "economic development"],
    "community_development": ["community", "community development", "housing"],
    "education": ["education", "training", "workforce"],
    "energy": ["energy", "clean energy", "renewable", "solar"],
    "environment": ["environment", "conservation", "sustainability"],
    "health": ["health", "healthcare", "medical"],
    "research": ["research", "r&d", "science", "innovation"],
    "technology": ["technology", "tech", "digital", "cyber"],
    "transportation": ["transportation", "transit", "infrastructure"],
}

FUNDING_TYPES = ["grant", "loan", "rebate", "tax_credit", "forgivable_loan"]

PLACEHOLDER_TITLES = {"untitled grant"}
PLACEHOLDER_SPONSORS = {"unknown sponsor"}

# Grants.gov funding activity category codes
GRANTS_GOV_CATEGORIES: dict[str, list[str]] = {
    "AG": ["agriculture"],
    "AR": ["arts_culture"],
    "BC": ["business", "community_development"],
    "CD": ["community_development"],
    "CP": ["environment"],
    "DPR": ["research"],
    "ED": ["education"],
    "ELT": ["education", "technology"],
    "EN": ["energy"],
    "ENV": ["environment"],
    "FN": ["business"],
    "HL": ["health"],
    "HO": ["community_development"],
    "HU": ["arts_culture"],
    "ISS": ["research", "technology"],
    "LJL": ["community_development"],
    "NR": ["environment"],
    "RA": ["research"],
    "RD": ["community_development"],
    "ST": ["research", "technology"],
    "T": ["transportation"],
    "O": [],
}

# Grants.gov eligible applicant codes -> (code prefixes, phrases, entity type)
GRANTS_GOV_ELIGIBILITY: list[tuple[tuple[str, ...], tuple[str, ...], str]] = [
    (("25",), ("nonprofits",), "nonprofit"),
    (("05",), ("small",), "small_business"),
    (("06",), ("higher education",), "educational"),
    (("00",), ("state", "local"), "government"),
    (("04",), ("individual",), "individual"),
    (("07",), ("tribal",), "tribal"),
]
