"""Section header vocabulary for match explanations.

Backend prompt versions have renamed these headers over time ("Relevant X
History" became "Explicit X Matches"). Add new spellings here, or at runtime
with HeaderVocabulary.extend().
"""

EXPLANATION_HEADERS = [
    {
        "source": "linkedin",
        "kind": "explicit",
        "aliases": ["explicit linkedin matches", "relevant linkedin history"],
        "keywords": [["explicit", "linkedin"], ["relevant", "linkedin", "history"]],
    },
    {
        "source": "linkedin",
        "kind": "inferred",
        "aliases": ["inferred linkedin matches"],
        "keywords": [["inferred", "linkedin"]],
    },
    {
        "source": "linkedin",
        "kind": "score",
        "aliases": ["linkedin relevance score", "linkedin history score", "linkedin score"],
        "keywords": [["linkedin", "score"], ["linkedin", "relevance"]],
    },
    {
        "source": "crosslake",
        "kind": "explicit",
        "aliases": ["explicit crosslake matches", "relevant crosslake history"],
        "keywords": [["explicit", "crosslake"], ["relevant", "crosslake", "history"]],
    },
    {
        "source": "crosslake",
        "kind": "inferred",
        "aliases": ["inferred crosslake matches"],
        "keywords": [["inferred", "crosslake"]],
    },
    {
        "source": "crosslake",
        "kind": "score",
        "aliases": ["crosslake history score", "crosslake relevance score", "crosslake score"],
        "keywords": [["crosslake", "score"], ["crosslake", "relevance"]],
    },
]

# Bullet lines matching any of these are template text, not evidence
PLACEHOLDER_PATTERNS = [
    r"\[",
    r"^no\b.*\bmatch(es)?\b",
    r"^none\.?$",
    r"^n/a\.?$",
]
