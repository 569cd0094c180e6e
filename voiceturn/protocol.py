from __future__ import annotations
import json
from typing import Annotated, Any, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

class InboundAgentMessage(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)
    type: Literal["agent_message"]
    text: str
    # Base64 audio; played in preference to synthesizing `text`.
    audio_data: Optional[str] = Field(default=None, alias="audioData")

InboundEvent = InboundAgentMessage

_inbound_adapter = TypeAdapter(InboundEvent)

class OutboundStart(BaseModel):
    model_config = ConfigDict(extra="forbid")
    type: Literal["start"] = "start"

class OutboundUserMessage(BaseModel):
    model_config = ConfigDict(extra="forbid")
    type: Literal["user_message"] = "user_message"
    text: str
    prompt_id: Optional[str] = None

class OutboundSessionEnded(BaseModel):
    model_config = ConfigDict(extra="forbid")
    type: Literal["session_ended"] = "session_ended"
    reason: str

OutboundEvent = Annotated[
    Union[
        OutboundStart,
        OutboundUserMessage,
        OutboundSessionEnded,
    ],
    Field(discriminator="type"),
]

_outbound_adapter = TypeAdapter(OutboundEvent)

def parse_inbound_json(raw_text: str) -> InboundEvent:
    return parse_inbound_obj(json.loads(raw_text))

def parse_inbound_obj(obj: Any) -> InboundEvent:
    return _inbound_adapter.validate_python(obj)

def parse_outbound_json(raw_text: str) -> OutboundEvent:
    return parse_outbound_obj(json.loads(raw_text))

def parse_outbound_obj(obj: Any) -> OutboundEvent:
    return _outbound_adapter.validate_python(obj)

def dumps_inbound(event: InboundEvent) -> str:
    return json.dumps(event.model_dump(by_alias=True, exclude_none=True), separators=(",", ":"), sort_keys=True)

def dumps_outbound(event: OutboundEvent) -> str:
    return json.dumps(event.model_dump(exclude_none=True), separators=(",", ":"), sort_keys=True)
