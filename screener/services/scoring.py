from __future__ import annotations

import json
import logging
import math
from typing import Any

from openai import OpenAI, OpenAIError
from pydantic import BaseModel, Field

from screener.core.config import settings

logger = logging.getLogger(__name__)

MAX_LIST_ITEMS = 3
DEFAULT_STRENGTH = "Candidate meets basic requirements"
DEFAULT_WEAKNESS = "No significant gaps identified"

SYSTEM_PROMPT = "You are an expert HR recruiter. Always respond with valid JSON only, no additional text."

USER_PROMPT_TEMPLATE = """You are an expert HR recruiter analyzing resumes for job positions.

Job Description:
{job_description}

Resume for {candidate_name}:
{cv_text}

Task: Analyze this resume against the job description and provide:
1. A score from 0-100 (where 100 is a perfect match)
2. 2-3 key strengths that make this candidate suitable for the role
3. 2-3 key weaknesses or gaps in their qualifications

Respond ONLY with valid JSON in this exact format:
{{
  "score": <number between 0-100>,
  "strengths": ["strength 1", "strength 2", "strength 3"],
  "weaknesses": ["weakness 1", "weakness 2", "weakness 3"]
}}"""


class ScoringError(RuntimeError):
    def __init__(self, message: str, *, code: str):
        super().__init__(message)
        self.code = code


class ScoringUnavailable(ScoringError):
    def __init__(self, message: str):
        super().__init__(message, code="scoring_unavailable")


class ScoringResponseMalformed(ScoringError):
    def __init__(self, message: str):
        super().__init__(message, code="response_malformed")


class ScoringResponseInvalidShape(ScoringError):
    def __init__(self, message: str):
        super().__init__(message, code="response_invalid_shape")


class ScoreResult(BaseModel):
    score: int = Field(ge=0, le=100)
    strengths: list[str] = Field(min_length=1, max_length=MAX_LIST_ITEMS)
    weaknesses: list[str] = Field(min_length=1, max_length=MAX_LIST_ITEMS)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _clean_items(items: list[Any], filler: str) -> list[str]:
    kept = [item for item in items[:MAX_LIST_ITEMS] if isinstance(item, str) and item.strip()]
    return kept or [filler]


def parse_score_payload(content: str) -> ScoreResult:
    """Validate a model reply and coerce it into the 0..100 / 1..3 contract."""
    try:
        payload = json.loads(content)
    except (TypeError, ValueError) as exc:
        raise ScoringResponseMalformed("Failed to parse AI response. Please try again.") from exc

    if not isinstance(payload, dict):
        raise ScoringResponseInvalidShape("AI response is not a JSON object.")
    score = payload.get("score")
    strengths = payload.get("strengths")
    weaknesses = payload.get("weaknesses")
    if not _is_number(score) or not isinstance(strengths, list) or not isinstance(weaknesses, list):
        raise ScoringResponseInvalidShape("Invalid response format from AI model.")

    # Half-up rounding, then clamp.
    rounded = math.floor(score + 0.5)
    return ScoreResult(
        score=max(0, min(100, rounded)),
        strengths=_clean_items(strengths, DEFAULT_STRENGTH),
        weaknesses=_clean_items(weaknesses, DEFAULT_WEAKNESS),
    )


class ScoringClient:
    """Scores resume text against a job description with an OpenAI chat model.

    Failed calls are never retried here; callers decide whether to retry or
    move on to the next CV.
    """

    def __init__(
        self,
        client: OpenAI | None = None,
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        max_cv_chars: int | None = None,
    ):
        self._client = client
        self._model = model or settings.openai_model
        self._temperature = settings.scoring_temperature if temperature is None else temperature
        self._max_tokens = max_tokens or settings.scoring_max_tokens
        self._max_cv_chars = max_cv_chars or settings.scoring_max_cv_chars

    def _openai(self) -> OpenAI:
        if self._client is None:
            api_key = (settings.openai_api_key or "").strip()
            if not api_key:
                raise ScoringUnavailable("OPENAI_API_KEY is missing")
            self._client = OpenAI(
                api_key=api_key,
                base_url=settings.openai_base_url,
                timeout=settings.openai_timeout_s,
                max_retries=0,
            )
        return self._client

    def build_prompt(self, cv_text: str, job_description: str, candidate_name: str) -> str:
        return USER_PROMPT_TEMPLATE.format(
            job_description=job_description,
            candidate_name=candidate_name,
            cv_text=(cv_text or "")[: self._max_cv_chars],
        )

    def score(self, cv_text: str, job_description: str, candidate_name: str) -> ScoreResult:
        prompt = self.build_prompt(cv_text, job_description, candidate_name)
        try:
            response = self._openai().chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                response_format={"type": "json_object"},
            )
        except OpenAIError as exc:
            logger.warning("scoring_request_failed model=%s prompt_len=%s: %s", self._model, len(prompt), exc)
            raise ScoringUnavailable(
                "Failed to analyze resume with AI. Please check your API key and try again."
            ) from exc

        content = response.choices[0].message.content if response.choices else ""
        if not content:
            raise ScoringResponseMalformed("Empty response from AI model.")
        return parse_score_payload(content)
