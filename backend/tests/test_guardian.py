"""Tests for the Guardian intervention agent."""

import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from sparsh.core.errors import AgentDispatchFailure
from sparsh.services.llm.guardian import GUARDIAN_NAME, GuardianAgent
from sparsh.services.messages import InterventionKind, Message, Role

USER_KEY = "jane.doe@uni.edu"


def _conversation(*texts):
    messages = []
    for text in texts:
        messages.append(Message(role=Role.USER, text=text))
        messages.append(Message(role=Role.ASSISTANT, text=f"echo: {text}"))
    return messages


@pytest.fixture
def agent(store):
    return GuardianAgent(store)


@pytest.mark.asyncio
async def test_no_user_turns_means_no_intervention(agent):
    assert await agent.analyze("stu1", USER_KEY, []) is None


@pytest.mark.asyncio
async def test_crisis_language_skips_model_call(agent):
    with patch.object(agent, "_decide", AsyncMock()) as decide:
        message = await agent.analyze("stu1", USER_KEY, _conversation("I want to end it all"))

    decide.assert_not_called()
    assert message.role is Role.AGENT
    assert message.metadata.kind is InterventionKind.CRISIS_TRIGGER


@pytest.mark.asyncio
async def test_assign_task_writes_to_store(agent, store):
    decision = {"action": "assign_task", "message": "Try a 10 minute walk.", "task_title": "10 minute walk"}
    with patch.object(agent, "_decide", AsyncMock(return_value=decision)):
        message = await agent.analyze("stu1", USER_KEY, _conversation("so much pressure"))

    assert message.metadata.kind is InterventionKind.TASK_ASSIGNMENT
    assert message.metadata.task_name == "10 minute walk"
    tasks = await store.get_tasks(USER_KEY)
    assert [(t.title, t.assigned_by) for t in tasks] == [("10 minute walk", GUARDIAN_NAME)]


@pytest.mark.asyncio
async def test_assign_task_without_title_fails(agent):
    decision = {"action": "assign_task", "message": "Try this."}
    with patch.object(agent, "_decide", AsyncMock(return_value=decision)):
        with pytest.raises(AgentDispatchFailure):
            await agent.analyze("stu1", USER_KEY, _conversation("so much pressure"))


@pytest.mark.asyncio
async def test_suggest_booking_picks_open_slot(agent, store):
    taken = await store.add_slot("counselor_dimple", "Dr. Dimple", "2026-10-20", "09:00")
    await store.request_slot(taken.id, "bob", "bob")
    free = await store.add_slot("counselor_dimple", "Dr. Dimple", "2026-10-20", "10:00")
    decision = {"action": "suggest_booking", "message": "A counselor could help."}

    with patch.object(agent, "_decide", AsyncMock(return_value=decision)):
        message = await agent.analyze("stu1", USER_KEY, _conversation("I feel stuck"))

    assert message.metadata.kind is InterventionKind.BOOKING_SUGGESTION
    assert message.metadata.slot_id == free.id
    assert message.metadata.slot_time == "2026-10-20 10:00"


@pytest.mark.asyncio
async def test_suggest_booking_without_open_slot(agent):
    decision = {"action": "suggest_booking", "message": "A counselor could help."}
    with patch.object(agent, "_decide", AsyncMock(return_value=decision)):
        message = await agent.analyze("stu1", USER_KEY, _conversation("I feel stuck"))

    assert message.text == "A counselor could help."
    assert message.metadata is None


@pytest.mark.asyncio
async def test_no_action(agent):
    with patch.object(agent, "_decide", AsyncMock(return_value={"action": "none"})):
        assert await agent.analyze("stu1", USER_KEY, _conversation("good day")) is None


@pytest.mark.asyncio
async def test_non_json_model_output_fails(agent):
    client = MagicMock()
    client.models.generate_content.return_value = MagicMock(text="not json")
    agent._client = client

    with pytest.raises(AgentDispatchFailure):
        await agent.analyze("stu1", USER_KEY, _conversation("hello"))


@pytest.mark.asyncio
async def test_transcript_sent_to_model(agent):
    client = MagicMock()
    client.models.generate_content.return_value = MagicMock(text='{"action": "none"}')
    agent._client = client

    await agent.analyze("stu1", USER_KEY, _conversation("hello"))

    contents = client.models.generate_content.call_args.kwargs["contents"]
    assert contents[0]["parts"][0]["text"] == "user: hello\nassistant: echo: hello"


@pytest.mark.asyncio
async def test_slow_model_call_times_out(agent):
    client = MagicMock()
    client.models.generate_content.side_effect = lambda **kwargs: time.sleep(0.3)
    agent._client = client
    agent.timeout = 0.05

    with pytest.raises(AgentDispatchFailure, match="did not answer"):
        await agent.analyze("stu1", USER_KEY, _conversation("hello"))
