from typing import Dict, Tuple
import re

from compass_agent.domain.models.conversation import QueryIntent


# Topic keyword lists, matched as lowercase substrings of the query
INTENT_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "is_policy_query": ("policy", "policies"),
    "is_claim_query": ("claim", "claims"),
    "is_document_query": ("form", "document", "guide", "pdf"),
    "is_task_query": ("task", "tasks"),
    "is_profile_query": ("profile", "information", "details"),
    "is_interaction_query": ("interaction", "history", "previous"),
    "is_calculation_query": ("calculate", "compute", "work out", "what is", "how much"),
    "is_advisor_query": (
        "advisor",
        "adviser",
        "financial advisor",
        "recommend",
        "find an advisor",
        "connect with",
        "assigned advisor",
    ),
}

ARITHMETIC_PATTERN = re.compile(r"\d|[-+*/%^=()]")


class IntentDetector:
    """Lexical classification of a query into topic flags"""

    def __init__(self, keywords: Dict[str, Tuple[str, ...]] = INTENT_KEYWORDS):
        self.keywords = keywords

    def detect(self, query: str) -> QueryIntent:
        """Detect every topic the query mentions; several flags may be set"""

        text = (query or "").lower()
        if not text.strip():
            return QueryIntent()

        flags = {
            flag: any(keyword in text for keyword in keywords)
            for flag, keywords in self.keywords.items()
        }
        if ARITHMETIC_PATTERN.search(text):
            flags["is_calculation_query"] = True

        return QueryIntent(**flags)


def detect_query_intent(query: str) -> QueryIntent:
    return IntentDetector().detect(query)
