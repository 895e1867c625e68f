"""Gemini REST client used by the LLM-backed sentiment analyzer."""

import logging
import time

import requests

from journal_digest.exceptions import LLMAPIError

logger = logging.getLogger(__name__)

API_URL = "https://generativelanguage.googleapis.com/v1beta/models"

FLASH_MODEL = "gemini-2.5-flash"

MAX_RETRIES = 3
RETRY_BACKOFF = [2, 5, 10]  # seconds to wait between retries


def _backoff(attempt: int) -> int:
    return RETRY_BACKOFF[min(attempt, len(RETRY_BACKOFF) - 1)]


def _is_retryable(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def _build_payload(system: str, user_message: str, max_tokens: int,
                   temperature: float, json_response: bool) -> dict:
    generation = {"maxOutputTokens": max_tokens, "temperature": temperature}
    if json_response:
        generation["responseMimeType"] = "application/json"
    return {
        "system_instruction": {"parts": [{"text": system}]},
        "contents": [{"role": "user", "parts": [{"text": user_message}]}],
        "generationConfig": generation,
    }


def _extract_text(resp: requests.Response) -> str:
    """Pull the first candidate's text out of a generateContent response."""
    try:
        candidate = resp.json()["candidates"][0]
        return "".join(part.get("text", "") for part in candidate["content"]["parts"])
    except (KeyError, IndexError, ValueError, TypeError) as e:
        raise LLMAPIError(f"Unexpected Gemini response: {e!r}") from e


def call_gemini(
    api_key: str,
    system: str,
    user_message: str,
    model: str = FLASH_MODEL,
    max_tokens: int = 256,
    temperature: float = 0.0,
    timeout: int = 30,
    json_response: bool = False,
) -> str:
    """Send one prompt to Gemini and return the generated text.

    Rate limits (429), server errors (5xx) and connection problems are retried
    with backoff; any other HTTP error fails immediately.

    Raises:
        LLMAPIError: If the key is missing, the response is malformed, or
            every attempt fails.
    """
    if not api_key:
        raise LLMAPIError("No GEMINI_API_KEY configured")

    url = f"{API_URL}/{model}:generateContent"
    headers = {"content-type": "application/json", "x-goog-api-key": api_key}
    payload = _build_payload(system, user_message, max_tokens, temperature, json_response)

    last_error = ""
    for attempt in range(MAX_RETRIES):
        try:
            resp = requests.post(url, headers=headers, json=payload, timeout=timeout)
        except requests.exceptions.RequestException as e:
            last_error = str(e)
            logger.warning("Gemini request error (attempt %d/%d): %s", attempt + 1, MAX_RETRIES, e)
        else:
            if not _is_retryable(resp.status_code):
                try:
                    resp.raise_for_status()
                except requests.exceptions.HTTPError as e:
                    raise LLMAPIError(f"Gemini API call failed: {e}") from e
                return _extract_text(resp)
            last_error = f"{resp.status_code}: {resp.text[:200]}"
            logger.warning("Gemini API %d (attempt %d/%d)", resp.status_code, attempt + 1, MAX_RETRIES)

        if attempt < MAX_RETRIES - 1:
            time.sleep(_backoff(attempt))

    raise LLMAPIError(f"Gemini API failed after {MAX_RETRIES} retries: {last_error}")
