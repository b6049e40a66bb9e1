import asyncio
import logging
from dataclasses import dataclass
from typing import Tuple, Union

import openai
from openai import AsyncOpenAI

from tg_relay.errors import ResponderFailure, ResponderIncompleteState
from tg_relay.linker import RequestEnvelope, ResponderReply
from tg_relay.store import Locale, Mode

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "Je bent de assistent van Nouvelle Équipe. "
    "Antwoord kort en praktisch."
)

MODE_INSTRUCTIONS = {
    Mode.GENERAL: "Answer general questions about the agency and its services.",
    Mode.SEEKING_WORK: (
        "The user is looking for work. Ask about skills, availability and region, "
        "and explain how to sign up."
    ),
    Mode.HIRING: (
        "The user wants to hire staff. Ask how many people, which roles, "
        "which dates and where, then summarize the request."
    ),
    Mode.QUICK: "Give the shortest useful answer, at most three sentences.",
}

LOCALE_INSTRUCTIONS = {
    Locale.NL: "Antwoord in het Nederlands.",
    Locale.EN: "Answer in English.",
    Locale.DE: "Antworte auf Deutsch.",
}

PENDING_STATUSES = {"queued", "in_progress"}

# output items that wait for the client to act before the model can continue
CLIENT_ACTION_ITEMS = {
    "function_call",
    "custom_tool_call",
    "computer_call",
    "local_shell_call",
    "mcp_approval_request",
}


# === Reply parsing ===

@dataclass(frozen=True)
class PlainText:
    text: str


@dataclass(frozen=True)
class StructuredBlocks:
    blocks: Tuple[str, ...]


Reply = Union[PlainText, StructuredBlocks]


def _as_dict(payload):
    if isinstance(payload, dict):
        return payload
    if hasattr(payload, "model_dump"):
        return payload.model_dump()
    raise ResponderFailure(f"unexpected response payload: {type(payload).__name__}")


def parse_reply(payload) -> Reply:
    """Parse a Responses API payload into PlainText or StructuredBlocks.

    ``output_text`` wins when the payload carries it (a key on dicts, a
    property on SDK responses that model_dump() leaves out); otherwise the
    text and refusal parts of the message items are collected in order.
    """
    data = _as_dict(payload)
    if isinstance(payload, dict):
        output_text = payload.get("output_text")
    else:
        output_text = getattr(payload, "output_text", None)

    status = data.get("status")
    if status == "incomplete":
        details = data.get("incomplete_details") or {}
        raise ResponderIncompleteState(f"response incomplete: {details.get('reason')}")
    if status == "failed":
        error = data.get("error") or {}
        raise ResponderFailure(f"response failed: {error.get('message')}")

    output = data.get("output") or []
    pending = [item.get("type") for item in output if item.get("type") in CLIENT_ACTION_ITEMS]
    if pending:
        raise ResponderIncompleteState(f"responder requested {', '.join(pending)}")

    if isinstance(output_text, str) and output_text.strip():
        return PlainText(output_text)

    blocks = []
    for item in output:
        if item.get("type") != "message":
            continue
        for part in item.get("content") or []:
            if part.get("type") == "output_text" and part.get("text"):
                blocks.append(part["text"])
            elif part.get("type") == "refusal" and part.get("refusal"):
                blocks.append(part["refusal"])
    if not blocks:
        raise ResponderFailure("response contains no text")
    return StructuredBlocks(tuple(blocks))


def canonical_text(reply: Reply) -> str:
    if isinstance(reply, PlainText):
        text = reply.text
    else:
        text = "\n\n".join(block.strip() for block in reply.blocks)
    text = text.strip()
    if not text:
        raise ResponderFailure("response text is empty")
    return text


# === Responder ===

class OpenAIResponder:
    """Sends one user turn to the OpenAI Responses API."""

    def __init__(
        self,
        client: AsyncOpenAI,
        model="gpt-4o-mini",
        system_prompt=DEFAULT_SYSTEM_PROMPT,
        prompt_id=None,
        timeout=60.0,
        poll_interval=1.0,
        max_polls=30,
        background=False,
    ):
        self.client = client
        self.model = model
        self.system_prompt = system_prompt
        self.prompt_id = prompt_id
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self.background = background

    def instructions(self, mode, locale):
        parts = [self.system_prompt.strip(), MODE_INSTRUCTIONS[mode], LOCALE_INSTRUCTIONS[locale]]
        return "\n".join(part for part in parts if part)

    def build_request(self, envelope: RequestEnvelope) -> dict:
        params = {
            "model": self.model,
            "input": [{"role": "user", "content": envelope.text}],
            "metadata": {"telegram_user_id": str(envelope.user_id)},
        }
        if self.prompt_id:
            params["prompt"] = {
                "id": self.prompt_id,
                "variables": {"mode": envelope.mode.value, "locale": envelope.locale.value},
            }
        else:
            params["instructions"] = self.instructions(envelope.mode, envelope.locale)
        if envelope.previous_token:
            params["previous_response_id"] = envelope.previous_token
        if self.background:
            params["background"] = True
        return params

    async def respond(self, envelope: RequestEnvelope) -> ResponderReply:
        params = self.build_request(envelope)
        try:
            response = await asyncio.wait_for(self._create_and_settle(params), self.timeout)
        except asyncio.TimeoutError:
            raise ResponderFailure(f"no answer within {self.timeout}s") from None
        except openai.OpenAIError as e:
            raise ResponderFailure(f"OpenAI error: {e}") from e

        data = _as_dict(response)
        token = data.get("id")
        if not token:
            raise ResponderFailure("response has no id")
        text = canonical_text(parse_reply(response))
        logger.debug("user %s got %d chars (response %s)", envelope.user_id, len(text), token)
        return ResponderReply(text=text, token=token)

    async def _create_and_settle(self, params):
        response = await self.client.responses.create(**params)
        polls = 0
        while getattr(response, "status", None) in PENDING_STATUSES:
            if polls >= self.max_polls:
                raise ResponderFailure(f"response {response.id} still {response.status} after {polls} checks")
            polls += 1
            await asyncio.sleep(self.poll_interval)
            response = await self.client.responses.retrieve(response.id)
        return response
