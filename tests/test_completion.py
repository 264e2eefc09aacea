import pytest

from watchtower.core import AIResponseException, LLMException
from watchtower.bulk_import.application import TruncationAwareCompletion

from tests.conftest import ScriptedCompletionClient, completion


async def test_truncated_answers_are_retried_with_a_doubled_budget(llm: ScriptedCompletionClient):
    llm.queue(
        "metadata",
        completion('{"title": "Out', stop_reason="max_tokens"),
        completion('{"title": "Outage", "sever', stop_reason="length"),
        completion({"title": "Outage", "severity": "high"}),
    )
    client = TruncationAwareCompletion(llm, max_retries=2)

    result = await client.complete_json("prompt", initial_max_tokens=4096, operation="metadata_extraction")

    assert result == {"title": "Outage", "severity": "high"}
    assert [max_tokens for _, max_tokens in llm.calls] == [4096, 8192, 16384]


async def test_last_truncated_answer_is_repaired(llm):
    llm.queue(
        "metadata",
        completion('{"title": "Out', stop_reason="max_tokens"),
        completion('{"title": "Outage", "summary": "Pool exh', stop_reason="max_tokens"),
    )
    client = TruncationAwareCompletion(llm, max_retries=1)

    result = await client.complete_json("prompt", initial_max_tokens=1000, operation="metadata_extraction")

    assert result == {"title": "Outage"}
    assert len(llm.calls) == 2


def test_budget_is_capped(llm):
    client = TruncationAwareCompletion(llm, max_retries=3, max_tokens_cap=10000)

    assert [client.budget_for(n, 4096) for n in range(4)] == [4096, 8192, 10000, 10000]


async def test_code_fenced_answer_is_parsed(llm):
    llm.queue("metadata", completion('```json\n{"title": "Outage"}\n```'))
    client = TruncationAwareCompletion(llm)

    result = await client.complete_json("prompt", initial_max_tokens=100, operation="metadata_extraction")

    assert result == {"title": "Outage"}
    assert len(llm.calls) == 1


async def test_provider_error_is_retried(llm):
    llm.queue("metadata", LLMException("rate limited"), completion({"title": "Outage"}))
    client = TruncationAwareCompletion(llm, max_retries=2)

    result = await client.complete_json("prompt", initial_max_tokens=100, operation="metadata_extraction")

    assert result == {"title": "Outage"}
    assert len(llm.calls) == 2


async def test_unparseable_answer_raises_after_last_attempt(llm):
    llm.queue(
        "metadata",
        completion("I could not find any incident data."),
        completion("Still no JSON, sorry."),
    )
    client = TruncationAwareCompletion(llm, max_retries=1)

    with pytest.raises(AIResponseException):
        await client.complete_json("prompt", initial_max_tokens=100, operation="metadata_extraction")
    assert len(llm.calls) == 2


async def test_json_array_is_rejected(llm):
    llm.queue("metadata", completion('["not", "an", "object"]'))
    client = TruncationAwareCompletion(llm, max_retries=0)

    with pytest.raises(AIResponseException):
        await client.complete_json("prompt", initial_max_tokens=100, operation="metadata_extraction")
