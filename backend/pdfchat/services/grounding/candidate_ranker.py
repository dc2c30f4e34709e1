"""
Candidate Ranker

Scores every sentence of every page against an AI answer and keeps the
best few. The score blends word overlap (Jaccard) with containment boosts
and a capped length regularizer so paraphrases and full sentences beat
boilerplate fragments.
"""

import logging

from .errors import NoCandidateError
from .models import Candidate, PageText
from .text_utils import jaccard, normalize, split_sentences, tokenize

logger = logging.getLogger(__name__)


class CandidateRanker:
    """
    Ranks (page, sentence) candidates for an AI answer.

    Score per sentence:
    1. jaccard(answer words, sentence words)
    2. +0.2 if the normalized sentence is contained in the normalized answer
    3. +0.2 if the normalized answer is contained in the normalized sentence
    4. +min(|sentence words| / 12, 0.2), only when 1-3 scored above zero

    Sentences without words (outline labels, bare numbers) score 0.0.
    """

    CONTAINMENT_BOOST = 0.2
    LENGTH_BOOST_CAP = 0.2
    LENGTH_BOOST_WORDS = 12

    def __init__(self, top_k: int = 3, min_score: float = 0.15):
        """
        Initialize the ranker.

        Args:
            top_k: Maximum number of candidates returned
            min_score: Candidates must score strictly above this
        """
        self.top_k = top_k
        self.min_score = min_score

    def score_sentence(self, answer_norm: str, answer_words: set[str], sentence: str) -> float:
        """Score one sentence; 0.0 for sentences with no word of three or more characters."""
        sentence_words = set(tokenize(sentence))
        if not sentence_words:
            # Outline labels like "A." or "IV." would otherwise match by containment
            return 0.0

        sentence_norm = normalize(sentence)
        score = jaccard(answer_words, sentence_words)

        if sentence_norm in answer_norm:
            score += self.CONTAINMENT_BOOST
        if answer_norm and answer_norm in sentence_norm:
            score += self.CONTAINMENT_BOOST

        # Length only separates sentences that relate to the answer at all
        if score > 0:
            score += min(len(sentence_words) / self.LENGTH_BOOST_WORDS, self.LENGTH_BOOST_CAP)
        return score

    def rank(self, answer: str, corpus: list[PageText]) -> list[Candidate]:
        """
        Score all sentences of all pages.

        Args:
            answer: AI answer text
            corpus: One PageText per page

        Returns:
            Candidates with positive scores, best first
        """
        answer_norm = normalize(answer)
        answer_words = set(tokenize(answer))

        candidates = []
        for page_text in corpus:
            for sentence in split_sentences(page_text.text):
                score = self.score_sentence(answer_norm, answer_words, sentence)
                if score > 0:
                    candidates.append(Candidate(page=page_text.page, sentence=sentence, score=score))

        # sorted() is stable: ties keep page then sentence order
        return sorted(candidates, key=lambda c: c.score, reverse=True)

    def top_candidates(self, answer: str, corpus: list[PageText]) -> list[Candidate]:
        """
        Best candidates above the minimum score.

        Raises:
            NoCandidateError: if nothing in the top K clears the threshold
        """
        ranked = self.rank(answer, corpus)
        top = [c for c in ranked[:self.top_k] if c.score > self.min_score]

        if not top:
            best = ranked[0].score if ranked else 0.0
            logger.info(f"No candidate above {self.min_score} (best score {best:.3f})")
            raise NoCandidateError(f"No sentence scored above {self.min_score}")

        logger.debug(f"Top candidates: {top}")
        return top
