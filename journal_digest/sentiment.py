"""Sentiment analysis of a user's aggregated journal text."""

import json
import logging
import re
from typing import Protocol

from journal_digest import llm_client
from journal_digest.exceptions import AnalysisError, LLMAPIError
from journal_digest.models import Sentiment, SentimentResult

logger = logging.getLogger(__name__)


class SentimentAnalyzer(Protocol):
    """Maps window text to a sentiment. Must return a neutral result for ``""``."""

    def analyze(self, text: str) -> SentimentResult:
        ...


# Word lists per label. Matching is on lowercase word tokens.
LEXICON: dict[Sentiment, frozenset[str]] = {
    Sentiment.HAPPY: frozenset({
        "good", "great", "happy", "joy", "joyful", "love", "loved", "lovely", "excited",
        "grateful", "thankful", "calm", "relaxed", "proud", "fun", "awesome", "amazing",
        "wonderful", "glad", "nice", "peaceful", "productive", "fantastic", "smile",
        "laughed", "enjoyed", "hopeful", "content", "delighted", "better",
    }),
    Sentiment.SAD: frozenset({
        "bad", "sad", "unhappy", "lonely", "alone", "cried", "crying", "tired",
        "miserable", "depressed", "down", "lost", "hurt", "grief", "disappointed",
        "empty", "awful", "terrible", "worse", "worst", "sick", "heartbroken", "gloomy",
    }),
    Sentiment.ANGRY: frozenset({
        "angry", "mad", "furious", "annoyed", "irritated", "hate", "hated", "rage",
        "frustrated", "frustrating", "outraged", "resent", "unfair", "yelled",
    }),
    Sentiment.ANXIOUS: frozenset({
        "anxious", "worried", "worry", "nervous", "stressed", "stress", "scared",
        "afraid", "panic", "tense", "overwhelmed", "uneasy", "restless", "deadline",
        "fear", "dread",
    }),
}

NEGATORS: frozenset[str] = frozenset({"not", "no", "never", "hardly", "don't", "didn't", "isn't", "wasn't"})

# Tie-break order when two labels have the same number of matches
LABEL_PRIORITY: list[Sentiment] = [Sentiment.HAPPY, Sentiment.SAD, Sentiment.ANGRY, Sentiment.ANXIOUS]

_TOKEN_RE = re.compile(r"[a-z']+")


def _tokenize(text: str) -> list[str]:
    try:
        text.encode("utf-8")
    except UnicodeEncodeError as e:
        raise AnalysisError(f"Text is not valid unicode: {e}") from e
    return _TOKEN_RE.findall(text.lower())


def _lookup(token: str) -> Sentiment | None:
    for label in LABEL_PRIORITY:
        if token in LEXICON[label]:
            return label
    return None


class LexiconSentimentAnalyzer:
    """Deterministic word-list analyzer.

    Each matched word counts toward its label; a negator directly in front of
    a happy word turns it into a sad match, and in front of a negative word
    drops it. The label is the one with most matches, the score is
    ``(happy - negative) / matched`` in [-1, 1].
    """

    def analyze(self, text: str) -> SentimentResult:
        if not isinstance(text, str):
            raise AnalysisError(f"Expected text, got {type(text).__name__}")
        tokens = _tokenize(text)
        if not tokens:
            return SentimentResult.neutral()

        counts = dict.fromkeys(LABEL_PRIORITY, 0)
        previous = ""
        for token in tokens:
            label = _lookup(token)
            if label is not None:
                if previous in NEGATORS:
                    label = Sentiment.SAD if label is Sentiment.HAPPY else None
                if label is not None:
                    counts[label] += 1
            previous = token

        matched = sum(counts.values())
        if matched == 0:
            return SentimentResult.neutral()

        negative = matched - counts[Sentiment.HAPPY]
        score = round((counts[Sentiment.HAPPY] - negative) / matched, 4)
        best = max(LABEL_PRIORITY, key=lambda s: (counts[s], -LABEL_PRIORITY.index(s)))
        return SentimentResult(label=best, score=score, matched_terms=matched)


ANALYSIS_SYSTEM_PROMPT = """\
You classify the overall mood of a person's journal entries from the past week.
Respond with a single JSON object: {"label": "<LABEL>", "score": <SCORE>}
- LABEL is one of HAPPY, SAD, ANGRY, ANXIOUS, NEUTRAL.
- SCORE is a number from -1.0 (very negative) to 1.0 (very positive).
Do not include any other text.
"""


class GeminiSentimentAnalyzer:
    """Analyzer backed by Gemini. Temperature 0 keeps repeated calls stable."""

    def __init__(self, api_key: str, timeout: int = 30, model: str = llm_client.FLASH_MODEL):
        self.api_key = api_key
        self.timeout = timeout
        self.model = model

    def analyze(self, text: str) -> SentimentResult:
        if not text.strip():
            return SentimentResult.neutral()
        _tokenize(text)

        try:
            raw = llm_client.call_gemini(
                self.api_key,
                ANALYSIS_SYSTEM_PROMPT,
                text,
                model=self.model,
                timeout=self.timeout,
                json_response=True,
            )
        except LLMAPIError as e:
            raise AnalysisError(f"Gemini analysis failed: {e}") from e
        return _parse_llm_result(raw)


def _parse_llm_result(raw: str) -> SentimentResult:
    """Parse the model's JSON answer into a SentimentResult."""
    cleaned = raw.strip()
    # Models sometimes wrap JSON in a markdown fence
    cleaned = re.sub(r"^```(?:json)?\s*|\s*```$", "", cleaned)
    try:
        data = json.loads(cleaned)
        label = Sentiment(str(data["label"]).upper())
        score = max(-1.0, min(1.0, float(data["score"])))
    except (ValueError, KeyError, TypeError) as e:
        raise AnalysisError(f"Unparseable sentiment response: {raw[:200]!r}") from e
    return SentimentResult(label=label, score=score)
