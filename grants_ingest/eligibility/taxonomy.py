"""
Eligibility vocabulary: entity tags, industry keywords, states.

Every table here is a controlled vocabulary; the engine never matches
against free-form tags that are not listed.
"""

from typing import Optional

ENTITY_TYPES = [
    "individual",
    "nonprofit",
    "small_business",
    "for_profit",
    "educational",
    "government",
    "tribal",
    "cooperative",
    "municipality",
]

# Profile entity type -> grant eligibility tags it satisfies
ENTITY_TO_ELIGIBILITY_TAGS: dict[str, list[str]] = {
    "individual": ["Individual"],
    "nonprofit": ["Nonprofit", "Nonprofit 501(c)(3)", "Faith-Based"],
    "small_business": [
        "Small Business", "For-Profit", "For-Profit Business",
        "Agricultural Producer", "Farmer", "Rancher", "Beginning Farmer",
    ],
    "for_profit": ["For-Profit", "For-Profit Business", "Small Business"],
    "educational": ["Educational Institution", "Nonprofit"],
    "government": ["Government", "Government Entity", "State Government", "Local Government", "Municipal"],
    "tribal": ["Tribal", "Tribal Organization", "Native American", "Government Entity"],
    "cooperative": ["Cooperative", "Nonprofit", "Agricultural Producer"],
    "municipality": ["Municipal", "Local Government", "Government Entity", "Public Housing Authority"],
}

INDUSTRY_TAGS = [
    "agriculture",
    "arts_culture",
    "business",
    "climate",
    "community",
    "education",
    "health",
    "housing",
    "infrastructure",
    "nonprofit",
    "research",
    "technology",
    "workforce",
    "youth",
]

INDUSTRY_POSITIVE_KEYWORDS: dict[str, list[str]] = {
    "agriculture": [
        "agriculture", "agricultural", "farm", "farmer", "farming", "ranch", "rancher",
        "rural development", "rural community", "rural business", "crop", "crops", "livestock",
        "cattle", "poultry", "usda", "food production", "food supply", "agribusiness", "soil",
        "irrigation", "harvest", "seed", "grain", "dairy", "organic farm", "conservation land",
        "land conservation", "pasture", "grazing", "horticulture", "commodity", "agricultural land",
        "farmland", "beginning farmer", "young farmer", "agricultural research", "food security",
        "vineyard", "orchard", "nursery", "aquaculture", "fishery", "forestry", "timber",
        "woodland", "agroforestry", "pollinator", "bee", "cooperative extension", "nrcs",
        "fsa", "farm service", "conservation reserve", "eqip", "csp", "reap",
    ],
    "arts_culture": [
        "arts", "art ", "culture", "cultural", "museum", "heritage", "creative", "humanities",
        "artistic", "theater", "theatre", "music", "visual arts", "performing arts",
        "nea", "neh", "endowment", "gallery", "exhibition", "literary", "dance",
        "symphony", "orchestra", "opera", "film", "media arts", "folk art", "craft",
        "preservation", "historic", "historical",
    ],
    "business": [
        "business", "entrepreneur", "commerce", "economic development", "sbir", "sttr",
        "small business", "startup", "commercialization", "sba", "export", "trade",
        "manufacturing", "industry", "enterprise", "venture", "micro-enterprise",
        "minority business", "women-owned", "veteran-owned", "disadvantaged business",
        "hub zone", "procurement", "8a", "wosb",
    ],
    "climate": [
        "climate", "environment", "environmental", "energy", "conservation", "sustainability",
        "epa", "renewable", "clean energy", "carbon", "emissions", "green", "solar",
        "wind energy", "geothermal", "recycling", "waste reduction", "pollution",
        "water quality", "air quality", "ecosystem", "habitat", "wildlife",
        "resilience", "adaptation", "mitigation", "electric vehicle", "ev",
    ],
    "community": [
        "community development", "community service", "neighborhood", "civic",
        "regional development", "block grant", "cdbg", "local government", "municipal",
        "town", "village", "revitalization", "placemaking", "main street",
        "economic development", "community foundation", "community action",
    ],
    "education": [
        "education", "school", "learning", "training", "academic", "student",
        "teacher", "curriculum", "educational", "k-12", "higher education", "university",
        "college", "classroom", "literacy", "stem education", "stem", "scholarship",
        "tuition", "early childhood", "head start", "preschool", "vocational",
    ],
    "health": [
        "health", "medical", "wellness", "nih", "clinical", "disease", "mental health",
        "healthcare", "hospital", "patient", "treatment", "therapy", "nursing",
        "public health", "medicine", "biomedical", "behavioral health", "substance abuse",
        "opioid", "telehealth", "rural health", "community health", "hrsa",
        "maternal", "child health", "nutrition", "food access",
    ],
    "housing": [
        "housing", "hud", "shelter", "homelessness", "affordable housing",
        "rent", "mortgage", "homeowner", "residential", "apartment", "dwelling",
        "low-income housing", "section 8", "lihtc", "home repair", "weatherization",
        "fair housing", "housing authority", "multifamily",
    ],
    "infrastructure": [
        "infrastructure", "transportation", "broadband", "water system", "transit",
        "highway", "bridge", "road", "utility", "sewer", "electric grid",
        "telecommunications", "fiber", "connectivity", "wastewater", "stormwater",
        "public works", "capital improvement", "dot", "fhwa",
    ],
    "nonprofit": [
        "nonprofit", "non-profit", "charitable", "philanthropy", "501c", "501(c)",
        "voluntary", "civil society", "ngo", "foundation", "giving", "charitable organization",
        "tax-exempt", "capacity building", "organizational development",
    ],
    "research": [
        "research", "science", "nsf", "study", "r&d", "scientific",
        "laboratory", "experiment", "investigation", "academic research", "basic research",
        "applied research", "innovation", "discovery", "nih", "doe", "darpa",
    ],
    "technology": [
        "technology", "tech", "digital", "software", "cyber", "artificial intelligence",
        "data", "computing", "information technology", "internet", "broadband",
        "telecommunications", "innovation", "ai", "machine learning", "blockchain",
        "cybersecurity", "it", "saas", "cloud",
    ],
    "workforce": [
        "workforce", "job training", "employment", "career", "labor", "worker",
        "apprenticeship", "vocational", "skills training", "job placement",
        "unemployment", "retraining", "wioa", "workforce development", "dol",
        "career pathways", "work-based learning",
    ],
    "youth": [
        "youth", "children", "child", "family", "families", "juvenile", "teen",
        "adolescent", "young people", "minor", "kids", "afterschool", "after-school",
        "mentoring", "foster", "adoption", "child welfare", "acf", "head start",
    ],
}

# Phrases that mark a grant as belonging to a different industry
INDUSTRY_EXCLUSION_KEYWORDS: dict[str, list[str]] = {
    "agriculture": [
        "cancer treatment", "cancer therapy", "chemotherapy", "tumor", "oncology",
        "hiv treatment", "aids research", "hiv/aids", "alzheimer", "dementia",
        "clinical trial", "drug trial", "pharmaceutical development", "drug development",
        "patient care", "hospital bed", "nursing care", "surgery", "surgical",
        "mental illness", "psychiatric", "addiction treatment", "substance abuse treatment",
        "cybersecurity", "cyber attack", "video game", "gaming", "social media platform",
        "app development", "mobile app", "website development",
        "museum exhibit", "art gallery", "theater production", "symphony", "opera",
        "film festival", "dance performance", "visual arts exhibition",
        "urban renewal", "metropolitan", "subway system", "city transit", "metro area",
        "weapons system", "missile defense", "military combat", "armed forces equipment",
    ],
    "health": [
        "crop production", "livestock management", "farm equipment", "irrigation system",
        "timber harvest", "mining operation", "oil extraction", "coal mining",
        "road construction", "bridge building", "highway maintenance",
    ],
    "technology": [
        "livestock", "crop yield", "farm equipment", "agricultural production",
        "nursing home", "patient care facility", "medical equipment maintenance",
        "art installation", "museum curation",
    ],
    "arts_culture": [
        "clinical trial", "drug development", "medical device", "patient outcome",
        "farm equipment", "livestock", "crop production", "agricultural chemicals",
        "road construction", "water treatment", "sewage",
    ],
    "business": [],
    "climate": [],
    "community": [],
    "education": [],
    "housing": [],
    "infrastructure": [],
    "nonprofit": [],
    "research": [],
    "workforce": [],
    "youth": [],
}

# Grant category label -> industry tags
CATEGORY_TO_INDUSTRY: dict[str, list[str]] = {
    "Agriculture": ["agriculture"],
    "Agriculture & Food": ["agriculture"],
    "Agricultural": ["agriculture"],
    "Rural Development": ["agriculture", "community"],
    "Arts": ["arts_culture"],
    "Arts & Culture": ["arts_culture"],
    "Humanities": ["arts_culture"],
    "Cultural Heritage": ["arts_culture"],
    "Business": ["business"],
    "Business & Entrepreneurship": ["business"],
    "Small Business": ["business"],
    "Economic Development": ["business", "community"],
    "Commerce": ["business"],
    "Environment": ["climate"],
    "Environmental": ["climate"],
    "Climate": ["climate"],
    "Energy": ["climate"],
    "Conservation": ["climate", "agriculture"],
    "Sustainability": ["climate"],
    "Community Development": ["community"],
    "Community": ["community"],
    "Regional Development": ["community"],
    "Education": ["education"],
    "Training": ["education", "workforce"],
    "Academic": ["education", "research"],
    "Health": ["health"],
    "Healthcare": ["health"],
    "Medical": ["health"],
    "Public Health": ["health"],
    "Mental Health": ["health"],
    "Housing": ["housing"],
    "Affordable Housing": ["housing"],
    "Infrastructure": ["infrastructure"],
    "Transportation": ["infrastructure"],
    "Broadband": ["infrastructure", "technology"],
    "Nonprofit": ["nonprofit"],
    "Philanthropy": ["nonprofit"],
    "Research": ["research"],
    "Science": ["research"],
    "Innovation": ["research", "technology"],
    "Technology": ["technology"],
    "IT": ["technology"],
    "Cybersecurity": ["technology"],
    "Workforce": ["workforce"],
    "Employment": ["workforce"],
    "Job Training": ["workforce"],
    "Youth": ["youth"],
    "Children": ["youth"],
    "Families": ["youth"],
}

US_STATES: dict[str, str] = {
    "AL": "Alabama", "AK": "Alaska", "AZ": "Arizona", "AR": "Arkansas",
    "CA": "California", "CO": "Colorado", "CT": "Connecticut", "DE": "Delaware",
    "FL": "Florida", "GA": "Georgia", "HI": "Hawaii", "ID": "Idaho",
    "IL": "Illinois", "IN": "Indiana", "IA": "Iowa", "KS": "Kansas",
    "KY": "Kentucky", "LA": "Louisiana", "ME": "Maine", "MD": "Maryland",
    "MA": "Massachusetts", "MI": "Michigan", "MN": "Minnesota", "MS": "Mississippi",
    "MO": "Missouri", "MT": "Montana", "NE": "Nebraska", "NV": "Nevada",
    "NH": "New Hampshire", "NJ": "New Jersey", "NM": "New Mexico", "NY": "New York",
    "NC": "North Carolina", "ND": "North Dakota", "OH": "Ohio", "OK": "Oklahoma",
    "OR": "Oregon", "PA": "Pennsylvania", "RI": "Rhode Island", "SC": "South Carolina",
    "SD": "South Dakota", "TN": "Tennessee", "TX": "Texas", "UT": "Utah",
    "VT": "Vermont", "VA": "Virginia", "WA": "Washington", "WV": "West Virginia",
    "WI": "Wisconsin", "WY": "Wyoming", "DC": "District of Columbia",
    "PR": "Puerto Rico", "VI": "Virgin Islands", "GU": "Guam",
    "AS": "American Samoa", "MP": "Northern Mariana Islands",
}

HARD_FILTER_CONFIG = {
    "REQUIRE_URL": True,
    "ALLOW_UNKNOWN_STATUS": True,
    "UNKNOWN_STATUS_PENALTY": 20,
    "MIN_QUALITY_SCORE": 0.2,
}


def normalize_state(value: Optional[str]) -> Optional[str]:
    """
    Resolve a state code or full state name to its 2-letter code.

    Args:
        value: "ca", "CA", "California", ...

    Returns:
        Upper-case code, or None if not a US state/territory
    """
    if not value:
        return None

    candidate = value.strip().upper()
    if candidate in US_STATES:
        return candidate

    lowered = value.strip().lower()
    for code, name in US_STATES.items():
        if name.lower() == lowered:
            return code

    return None


def contains_keywords(text: str, keywords: list[str]) -> bool:
    text_lower = text.lower()
    return any(kw.lower() in text_lower for kw in keywords)


def count_keyword_matches(text: str, keywords: list[str]) -> int:
    text_lower = text.lower()
    return sum(1 for kw in keywords if kw.lower() in text_lower)
