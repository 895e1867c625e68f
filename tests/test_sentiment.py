"""Tests for sentiment analyzers and the Gemini client."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from journal_digest import llm_client
from journal_digest.exceptions import AnalysisError, LLMAPIError
from journal_digest.models import Sentiment, SentimentResult
from journal_digest.sentiment import GeminiSentimentAnalyzer, LexiconSentimentAnalyzer


# --- Lexicon analyzer ---


def test_empty_text_is_neutral():
    result = LexiconSentimentAnalyzer().analyze("")
    assert result == SentimentResult(label=Sentiment.NEUTRAL, score=0.0, matched_terms=0)


def test_text_without_known_words_is_neutral():
    result = LexiconSentimentAnalyzer().analyze("went to the store on tuesday")
    assert result.label == Sentiment.NEUTRAL
    assert result.score == 0.0


def test_good_day_is_happy():
    result = LexiconSentimentAnalyzer().analyze("good day")
    assert result.label == Sentiment.HAPPY
    assert result.score == 1.0
    assert result.matched_terms == 1


def test_bad_day_is_sad():
    result = LexiconSentimentAnalyzer().analyze("bad day")
    assert result.label == Sentiment.SAD
    assert result.score == -1.0


def test_mixed_text_score():
    result = LexiconSentimentAnalyzer().analyze("Good morning, great lunch, bad evening.")
    assert result.label == Sentiment.HAPPY
    assert result.score == pytest.approx(0.3333, abs=1e-4)
    assert result.matched_terms == 3


def test_negated_happy_word_counts_as_sad():
    result = LexiconSentimentAnalyzer().analyze("I am not happy")
    assert result.label == Sentiment.SAD


def test_negated_negative_word_is_dropped():
    result = LexiconSentimentAnalyzer().analyze("I was not worried at all")
    assert result.label == Sentiment.NEUTRAL


def test_dominant_negative_label():
    result = LexiconSentimentAnalyzer().analyze("angry and furious, a bit anxious")
    assert result.label == Sentiment.ANGRY
    assert result.score == -1.0


def test_tie_uses_label_priority():
    result = LexiconSentimentAnalyzer().analyze("happy then sad")
    assert result.label == Sentiment.HAPPY
    assert result.score == 0.0


def test_lexicon_is_deterministic():
    analyzer = LexiconSentimentAnalyzer()
    text = "Stressed about the deadline but proud of the team. Great dinner."
    assert analyzer.analyze(text) == analyzer.analyze(text)


def test_invalid_unicode_raises_analysis_error():
    with pytest.raises(AnalysisError, match="unicode"):
        LexiconSentimentAnalyzer().analyze("good \ud800 day")


def test_non_text_raises_analysis_error():
    with pytest.raises(AnalysisError):
        LexiconSentimentAnalyzer().analyze(None)


# --- Gemini analyzer ---


def test_gemini_empty_text_skips_api_call():
    with patch("journal_digest.llm_client.call_gemini") as mock_call:
        result = GeminiSentimentAnalyzer("key").analyze("   ")
    assert result.label == Sentiment.NEUTRAL
    mock_call.assert_not_called()


def test_gemini_parses_json_response():
    with patch("journal_digest.llm_client.call_gemini", return_value='{"label": "anxious", "score": -0.4}'):
        result = GeminiSentimentAnalyzer("key").analyze("so many deadlines")
    assert result.label == Sentiment.ANXIOUS
    assert result.score == -0.4


def test_gemini_parses_fenced_json_and_clamps_score():
    raw = '```json\n{"label": "HAPPY", "score": 3}\n```'
    with patch("journal_digest.llm_client.call_gemini", return_value=raw):
        result = GeminiSentimentAnalyzer("key").analyze("best week ever")
    assert result.label == Sentiment.HAPPY
    assert result.score == 1.0


def test_gemini_unparseable_response():
    with patch("journal_digest.llm_client.call_gemini", return_value="I think they are happy"):
        with pytest.raises(AnalysisError, match="Unparseable"):
            GeminiSentimentAnalyzer("key").analyze("good day")


def test_gemini_unknown_label():
    with patch("journal_digest.llm_client.call_gemini", return_value='{"label": "ECSTATIC", "score": 1}'):
        with pytest.raises(AnalysisError):
            GeminiSentimentAnalyzer("key").analyze("good day")


def test_gemini_api_error_becomes_analysis_error():
    with patch("journal_digest.llm_client.call_gemini", side_effect=LLMAPIError("quota")):
        with pytest.raises(AnalysisError, match="quota"):
            GeminiSentimentAnalyzer("key").analyze("good day")


# --- llm_client ---


def _response(status: int, payload: dict | None = None) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.text = "error"
    resp.json.return_value = payload or {}
    return resp


def test_call_gemini_requires_key():
    with pytest.raises(LLMAPIError, match="GEMINI_API_KEY"):
        llm_client.call_gemini("", "system", "hello")


def test_call_gemini_retries_server_errors():
    ok = _response(200, {"candidates": [{"content": {"parts": [{"text": "done"}]}}]})
    with (
        patch("journal_digest.llm_client.requests.post", side_effect=[_response(503), ok]) as mock_post,
        patch("journal_digest.llm_client.time.sleep") as mock_sleep,
    ):
        assert llm_client.call_gemini("key", "system", "hello", json_response=True) == "done"

    assert mock_post.call_count == 2
    mock_sleep.assert_called_once_with(llm_client.RETRY_BACKOFF[0])
    payload = mock_post.call_args.kwargs["json"]
    assert payload["generationConfig"]["responseMimeType"] == "application/json"


def test_call_gemini_gives_up_after_retries():
    with (
        patch("journal_digest.llm_client.requests.post", return_value=_response(429)),
        patch("journal_digest.llm_client.time.sleep"),
    ):
        with pytest.raises(LLMAPIError, match="after 3 retries"):
            llm_client.call_gemini("key", "system", "hello")


def test_call_gemini_malformed_response():
    with patch("journal_digest.llm_client.requests.post", return_value=_response(200, {"candidates": []})):
        with pytest.raises(LLMAPIError, match="Unexpected"):
            llm_client.call_gemini("key", "system", "hello")


def test_call_gemini_retries_connection_errors():
    ok = _response(200, {"candidates": [{"content": {"parts": [{"text": "a"}, {"text": "b"}]}}]})
    error = requests.exceptions.ConnectionError("reset by peer")
    with (
        patch("journal_digest.llm_client.requests.post", side_effect=[error, error, ok]),
        patch("journal_digest.llm_client.time.sleep") as mock_sleep,
    ):
        assert llm_client.call_gemini("key", "system", "hello") == "ab"
    assert [c.args[0] for c in mock_sleep.call_args_list] == llm_client.RETRY_BACKOFF[:2]
