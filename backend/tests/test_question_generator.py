import json

import httpx
import pytest

from skillquiz.core.errors import ConfigurationError, PaymentRequired, RateLimited, UpstreamError
from skillquiz.models.quiz import SkillLevel
from skillquiz.services import question_generator as generator_module
from skillquiz.services.question_generator import (
    QuestionGenerator,
    parse_questions,
    strip_code_fences,
    subject_label,
)


def _question(i: int, correct: str = "B") -> dict:
    return {
        "question": f"What is {i} + {i}?",
        "options": {"A": str(i), "B": str(2 * i), "C": str(3 * i), "D": str(4 * i)},
        "correct_answer": correct,
        "explanation": f"{i} + {i} = {2 * i}.",
    }


def _completion(content: str, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json={"choices": [{"message": {"content": content}}]})


def _fake_client(result):
    class _Client:
        calls: list[dict] = []

        def __init__(self, *args, **kwargs):
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def post(self, url, json=None, headers=None):
            _Client.calls.append({"url": url, "json": json, "headers": headers})
            if isinstance(result, Exception):
                raise result
            return result

    return _Client


def _generator(api_key: str | None = "test-key") -> QuestionGenerator:
    return QuestionGenerator(api_key=api_key, base_url="http://oracle/v1/", model="dummy")


async def test_generate_ok_strips_code_fences(monkeypatch):
    content = "```json\n" + json.dumps([_question(i) for i in range(1, 4)]) + "\n```"
    client_cls = _fake_client(_completion(content))
    monkeypatch.setattr(generator_module.httpx, "AsyncClient", client_cls)

    out = await _generator().generate(["Mathematics"], SkillLevel.intermediate, 3)

    assert len(out) == 3
    assert [q.correct_answer for q in out] == ["B", "B", "B"]
    assert out[0].options.as_dict() == {"A": "1", "B": "2", "C": "3", "D": "4"}

    call = client_cls.calls[0]
    assert call["url"] == "http://oracle/v1/chat/completions"
    assert call["headers"]["Authorization"] == "Bearer test-key"
    assert call["json"]["model"] == "dummy"
    assert "temperature" not in call["json"]
    system = call["json"]["messages"][0]["content"]
    assert "Generate 3 multiple-choice questions" in system
    assert '"Mathematics"' in system
    assert "Intermediate level" in system


async def test_generate_joins_multiple_subjects(monkeypatch):
    client_cls = _fake_client(_completion(json.dumps([_question(1)])))
    monkeypatch.setattr(generator_module.httpx, "AsyncClient", client_cls)

    await _generator().generate(["Java", "DBMS"], "Beginner", 1)

    user_msg = client_cls.calls[0]["json"]["messages"][1]["content"]
    assert user_msg == "Generate 1 Beginner level questions about Java, DBMS."


async def test_generate_drops_extra_questions(monkeypatch):
    client_cls = _fake_client(_completion(json.dumps([_question(i) for i in range(1, 7)])))
    monkeypatch.setattr(generator_module.httpx, "AsyncClient", client_cls)

    out = await _generator().generate(["Science"], SkillLevel.advanced, 5)
    assert len(out) == 5


async def test_generate_too_few_questions_is_upstream_error(monkeypatch):
    client_cls = _fake_client(_completion(json.dumps([_question(1), _question(2)])))
    monkeypatch.setattr(generator_module.httpx, "AsyncClient", client_cls)

    with pytest.raises(UpstreamError):
        await _generator().generate(["Science"], SkillLevel.advanced, 5)


@pytest.mark.parametrize(
    "status_code, error_cls",
    [(429, RateLimited), (402, PaymentRequired), (500, UpstreamError), (403, UpstreamError)],
)
async def test_generate_maps_oracle_status(monkeypatch, status_code, error_cls):
    client_cls = _fake_client(httpx.Response(status_code, json={"error": "nope"}))
    monkeypatch.setattr(generator_module.httpx, "AsyncClient", client_cls)

    with pytest.raises(error_cls):
        await _generator().generate(["Java"], SkillLevel.beginner, 1)
    assert len(client_cls.calls) == 1


async def test_generate_missing_key_is_configuration_error(monkeypatch):
    client_cls = _fake_client(_completion("[]"))
    monkeypatch.setattr(generator_module.httpx, "AsyncClient", client_cls)

    with pytest.raises(ConfigurationError):
        await _generator(api_key="  ").generate(["Java"], SkillLevel.beginner, 1)
    assert client_cls.calls == []


async def test_generate_timeout_is_upstream_error(monkeypatch):
    client_cls = _fake_client(httpx.ReadTimeout("timed out"))
    monkeypatch.setattr(generator_module.httpx, "AsyncClient", client_cls)

    with pytest.raises(UpstreamError):
        await _generator().generate(["Java"], SkillLevel.beginner, 1)


async def test_generate_unexpected_body_is_upstream_error(monkeypatch):
    client_cls = _fake_client(httpx.Response(200, json={"id": "x"}))
    monkeypatch.setattr(generator_module.httpx, "AsyncClient", client_cls)

    with pytest.raises(UpstreamError):
        await _generator().generate(["Java"], SkillLevel.beginner, 1)


async def test_generate_rejects_invalid_inputs():
    gen = _generator()
    with pytest.raises(ValueError):
        await gen.generate([], SkillLevel.beginner, 1)
    with pytest.raises(ValueError):
        await gen.generate(["Java"], "Expert", 1)
    with pytest.raises(ValueError):
        await gen.generate(["Java"], SkillLevel.beginner, 0)


def test_parse_questions_accepts_wrapped_object_and_prose():
    wrapped = json.dumps({"questions": [_question(1)]})
    assert len(parse_questions(wrapped)) == 1

    prose = "Here is your quiz:\n" + json.dumps([_question(1), _question(2)]) + "\nGood luck!"
    assert len(parse_questions(prose)) == 2


def test_parse_questions_rejects_not_json():
    with pytest.raises(UpstreamError):
        parse_questions("not-json")


def test_parse_questions_rejects_correct_answer_outside_labels():
    with pytest.raises(UpstreamError):
        parse_questions(json.dumps([_question(1, correct="E")]))
    with pytest.raises(UpstreamError):
        parse_questions(json.dumps([_question(1, correct="b")]))


def test_parse_questions_rejects_incomplete_options():
    q = _question(1)
    del q["options"]["D"]
    with pytest.raises(UpstreamError):
        parse_questions(json.dumps([q]))

    q = _question(1)
    q["options"]["E"] = "extra"
    with pytest.raises(UpstreamError):
        parse_questions(json.dumps([q]))


def test_parse_questions_rejects_empty_question_text():
    q = _question(1)
    q["question"] = "   "
    with pytest.raises(UpstreamError):
        parse_questions(json.dumps([q]))


def test_strip_code_fences_and_subject_label():
    assert strip_code_fences("```json\n[1]\n```") == "[1]"
    assert strip_code_fences("```\n[]```") == "[]"
    assert subject_label(["Java"]) == "Java"
    assert subject_label(["Java", "DBMS", "Science"]) == "Java, DBMS, Science"
