from __future__ import annotations

import json
import logging
import re
from typing import Any, Sequence

import httpx
from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError, field_validator

from skillquiz.core.config import settings
from skillquiz.core.errors import ConfigurationError, PaymentRequired, RateLimited, UpstreamError
from skillquiz.models.quiz import OPTION_LABELS, SkillLevel

logger = logging.getLogger("skillquiz.generation")


class QuestionOptions(BaseModel):
    """Exactly one option text per label A-D."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    A: str
    B: str
    C: str
    D: str

    @field_validator("A", "B", "C", "D", mode="before")
    @classmethod
    def _non_empty(cls, v: Any) -> str:
        s = str(v if v is not None else "").strip()
        if not s:
            raise ValueError("option text must not be empty")
        return s

    def as_dict(self) -> dict[str, str]:
        return {label: getattr(self, label) for label in OPTION_LABELS}


class GeneratedQuestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    question: str
    options: QuestionOptions
    correct_answer: str
    explanation: str = ""

    @field_validator("question")
    @classmethod
    def _question_text(cls, v: str) -> str:
        s = (v or "").strip()
        if not s:
            raise ValueError("question text must not be empty")
        return s

    @field_validator("correct_answer")
    @classmethod
    def _correct_label(cls, v: str) -> str:
        s = (v or "").strip()
        if s not in OPTION_LABELS:
            raise ValueError(f"correct_answer must be one of {', '.join(OPTION_LABELS)}")
        return s

    @field_validator("explanation", mode="before")
    @classmethod
    def _explanation(cls, v: Any) -> str:
        return str(v if v is not None else "").strip()


_questions_adapter = TypeAdapter(list[GeneratedQuestion])


def subject_label(subjects: Sequence[str]) -> str:
    items = [str(s).strip() for s in subjects if str(s or "").strip()]
    if len(items) == 1:
        return items[0]
    return ", ".join(items)


def build_messages(*, subject: str, skill_level: SkillLevel, count: int) -> list[dict[str, str]]:
    level = skill_level.value
    system_prompt = (
        f"You are an expert quiz generator. Generate {int(count)} multiple-choice questions "
        f"for the subject \"{subject}\" at {level} level.\n\n"
        "Each question should have:\n"
        "- A clear, well-written question\n"
        "- Four answer options (A, B, C, D)\n"
        "- One correct answer\n"
        "- A brief explanation of why the answer is correct\n\n"
        "Return ONLY a valid JSON array with this exact structure:\n"
        "[\n"
        "  {\n"
        "    \"question\": \"Question text here?\",\n"
        "    \"options\": {\"A\": \"First option\", \"B\": \"Second option\", "
        "\"C\": \"Third option\", \"D\": \"Fourth option\"},\n"
        "    \"correct_answer\": \"A\",\n"
        "    \"explanation\": \"Explanation of why this answer is correct.\"\n"
        "  }\n"
        "]"
    )
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": f"Generate {int(count)} {level} level questions about {subject}."},
    ]


def strip_code_fences(text: str) -> str:
    s = re.sub(r"```json\n?", "", text or "")
    s = re.sub(r"```\n?", "", s)
    return s.strip()


def _extract_json(text: str) -> Any | None:
    if not text:
        return None

    s = text.strip()
    try:
        return json.loads(s)
    except ValueError:
        pass

    # Some models wrap the payload in prose; take the outermost array.
    m = re.search(r"\[[\s\S]*\]", s)
    if not m:
        return None

    try:
        return json.loads(m.group(0))
    except ValueError:
        return None


def parse_questions(text: str) -> list[GeneratedQuestion]:
    obj = _extract_json(strip_code_fences(text))
    if isinstance(obj, dict):
        obj = obj.get("questions")
    if not isinstance(obj, list):
        raise UpstreamError("AI returned an invalid quiz format. Please try again.")

    try:
        return _questions_adapter.validate_python(obj)
    except ValidationError as e:
        logger.warning("generated questions failed validation: %s", e.errors()[:3])
        raise UpstreamError("AI returned malformed questions. Please try again.") from e


class QuestionGenerator:
    """Client for the text-generation oracle (OpenAI-compatible chat completions)."""

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str,
        model: str,
        temperature: float | None = None,
        timeout: httpx.Timeout | None = None,
    ):
        self.api_key = (api_key or "").strip()
        self.base_url = str(base_url or "").rstrip("/")
        self.model = model
        self.temperature = temperature
        self.timeout = timeout or httpx.Timeout(10.0)

    @classmethod
    def from_settings(cls) -> "QuestionGenerator":
        return cls(
            api_key=settings.llm_api_key,
            base_url=settings.llm_base_url,
            model=settings.llm_model,
            temperature=settings.llm_temperature,
            timeout=httpx.Timeout(
                connect=float(settings.llm_timeout_connect),
                read=float(settings.llm_timeout_read),
                write=float(settings.llm_timeout_write),
                pool=3.0,
            ),
        )

    async def generate(
        self,
        subjects: Sequence[str],
        skill_level: SkillLevel | str,
        count: int,
    ) -> list[GeneratedQuestion]:
        subject = subject_label(subjects or [])
        if not subject:
            raise ValueError("at least one subject is required")
        level = SkillLevel(skill_level)
        if int(count) <= 0:
            raise ValueError("question count must be positive")
        count = int(count)

        if not self.api_key:
            raise ConfigurationError()

        logger.info("generating quiz subject=%r skill_level=%s count=%d", subject, level.value, count)

        payload: dict[str, Any] = {
            "model": self.model,
            "messages": build_messages(subject=subject, skill_level=level, count=count),
        }
        if self.temperature is not None:
            payload["temperature"] = float(self.temperature)

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    self.base_url + "/chat/completions",
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.HTTPError as e:
            logger.error("AI gateway request failed: %s", type(e).__name__)
            raise UpstreamError(f"AI gateway request failed: {type(e).__name__}") from e

        if resp.status_code == 429:
            raise RateLimited()
        if resp.status_code == 402:
            raise PaymentRequired()
        if not resp.is_success:
            logger.error("AI gateway error: %s %s", resp.status_code, (resp.text or "")[:600])
            raise UpstreamError(f"AI gateway error: {resp.status_code}", http_status=resp.status_code)

        try:
            data = resp.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise UpstreamError("AI gateway returned an unexpected response") from e
        if not isinstance(content, str):
            raise UpstreamError("AI gateway returned an empty response")

        questions = parse_questions(content)
        if len(questions) < count:
            raise UpstreamError(f"AI returned {len(questions)} of {count} requested questions. Please try again.")
        return questions[:count]


def get_question_generator() -> QuestionGenerator:
    return QuestionGenerator.from_settings()
