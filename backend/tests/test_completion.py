"""Tests for completion request/response shaping."""

import pytest
from langchain_core.messages import AIMessage, HumanMessage

from modules.llm.completion import ChatOpenAICompletionClient, to_completion_response
from schemas.completion import CompletionRequest, FunctionCall


def test_payload_omits_tools_when_none():
    request = CompletionRequest(model="m", messages=[{"role": "user", "content": "hi"}], max_tokens=10)

    assert request.payload() == {"model": "m", "messages": [{"role": "user", "content": "hi"}], "max_tokens": 10}


def test_payload_keeps_tools_when_present():
    tool = {"type": "function", "function": {"name": "echo", "description": "", "parameters": {}}}
    request = CompletionRequest(model="m", messages=[], tools=[tool])

    assert request.payload()["tools"] == [tool]


def test_function_arguments_are_json_decoded():
    assert FunctionCall(name="echo", arguments='{"message": "hi"}').parsed_arguments() == {"message": "hi"}
    assert FunctionCall(name="echo", arguments="").parsed_arguments() == {}


@pytest.mark.parametrize("arguments", ["[1, 2]", "{broken"])
def test_function_arguments_must_be_an_object(arguments):
    with pytest.raises(ValueError):
        FunctionCall(name="echo", arguments=arguments).parsed_arguments()


def test_response_prefers_raw_tool_call_arguments():
    message = AIMessage(
        content="",
        additional_kwargs={"tool_calls": [{
            "id": "call_1",
            "type": "function",
            "function": {"name": "echo", "arguments": '{"message":"hi"}'},
        }]},
    )

    response = to_completion_response(message)

    call = response.message.tool_calls[0]
    assert call.id == "call_1"
    assert call.function.name == "echo"
    assert call.function.arguments == '{"message":"hi"}'
    assert response.message.content is None


def test_response_serializes_parsed_tool_calls():
    message = AIMessage(content="using a tool", tool_calls=[{"name": "add", "args": {"a": 1, "b": 2}, "id": "t1"}])

    response = to_completion_response(message)

    assert response.message.content == "using a tool"
    assert response.message.tool_calls[0].function.parsed_arguments() == {"a": 1, "b": 2}


def test_response_flattens_content_blocks():
    message = AIMessage(content=[{"type": "text", "text": "four"}, "!"])

    assert to_completion_response(message).message.content == "four!"


class RecordingChatModel:
    """Stands in for ChatOpenAI and records what the client binds and sends."""

    model_name = "default-model"

    def __init__(self, reply):
        self.reply = reply
        self.tools = None
        self.bound = {}
        self.messages = None

    def bind_tools(self, tools):
        self.tools = tools
        return self

    def bind(self, **kwargs):
        self.bound.update(kwargs)
        return self

    async def ainvoke(self, messages):
        self.messages = messages
        return self.reply


@pytest.mark.asyncio
async def test_client_sends_the_request_payload():
    tool = {"type": "function", "function": {"name": "echo", "description": "", "parameters": {}}}
    model = RecordingChatModel(AIMessage(content="hello"))
    request = CompletionRequest(
        model="other-model", messages=[{"role": "user", "content": "hi"}], tools=[tool], max_tokens=64
    )

    response = await ChatOpenAICompletionClient(model).complete(request)

    assert response.message.content == "hello"
    assert model.tools == [tool]
    assert model.bound == {"max_tokens": 64, "model": "other-model"}
    assert model.messages == [HumanMessage(content="hi")]


@pytest.mark.asyncio
async def test_client_skips_tool_binding_without_tools():
    model = RecordingChatModel(AIMessage(content="4"))
    request = CompletionRequest(model="default-model", messages=[{"role": "user", "content": "2+2"}])

    await ChatOpenAICompletionClient(model).complete(request)

    assert model.tools is None
    assert model.bound == {}
