from typing import Iterable, List, Tuple, TypeVar
import re


T = TypeVar("T")

_WORD = re.compile(r'\w+')


class ContextRanker:
    """Ranks text by keyword relevance to a query"""

    def calculate_relevance(self, query: str, content: str) -> float:
        """Calculate relevance score between query and content"""

        query_lower = query.lower()
        content_lower = content.lower()

        query_words = set(_WORD.findall(query_lower))
        content_words = set(_WORD.findall(content_lower))

        if not query_words:
            return 0.0

        overlap = len(query_words.intersection(content_words))
        score = overlap / len(query_words)

        # Boost score if query appears as substring
        if query_lower in content_lower:
            score += 0.3

        return min(score, 1.0)

    def rank(self, query: str, items: Iterable[Tuple[T, str]], limit: int, min_score: float = 0.0) -> List[Tuple[T, float]]:
        """Score (item, text) pairs and keep the best ``limit`` above ``min_score``"""

        scored = [(item, self.calculate_relevance(query, text)) for item, text in items]
        scored = [pair for pair in scored if pair[1] > min_score]
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored[:limit]
