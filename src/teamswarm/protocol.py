"""Message envelope and handshake protocol codecs for teamswarm.

Agents talk over plain text. Structured handshakes (shutdown, join, plan
approval) travel as JSON objects with a ``type`` discriminant serialized
into ``AgentMessage.text``:

    {"type": "shutdown_request", "requestId": "shutdown-m0x1y2z3-ab12", "from": "lead"}

Each request carries a generated ``requestId`` that the matching response
echoes back. Parsers locate the JSON object inside free-form text, check
the discriminant and return ``None`` on any mismatch; they never raise.

Readable chat can also be framed with a teammate tag:

    <teammate_message teammate_id="alice" color="blue" summary="status">
    Tests pass on my branch.
    </teammate_message>
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Type, TypeVar, Union

from .logging_config import get_logger
from .models import AgentColor
from .utils import generate_id, utc_now_iso
from .validators import validate_request_prefix

logger = get_logger(__name__)

__all__ = [
    "AgentMessageType",
    "AgentMessage",
    "TeammateMessage",
    "ShutdownRequest",
    "ShutdownResponse",
    "JoinRequest",
    "JoinApproved",
    "JoinRejected",
    "PlanApprovalRequest",
    "PlanApprovalResponse",
    "ProtocolPayload",
    "PROTOCOL_PAYLOAD_TYPES",
    "generate_request_id",
    "generate_message_id",
    "create_agent_message",
    "create_shutdown_request",
    "create_shutdown_response",
    "create_join_request",
    "create_join_approved",
    "create_join_rejected",
    "create_plan_approval_request",
    "create_plan_approval_response",
    "create_mode_change_message",
    "serialize_message",
    "parse_json_message",
    "parse_shutdown_request",
    "parse_shutdown_response",
    "parse_join_request",
    "parse_join_approved",
    "parse_join_rejected",
    "parse_plan_approval_request",
    "parse_plan_approval_response",
    "parse_protocol_message",
    "get_join_request_summary",
    "wrap_teammate_message",
    "parse_teammate_messages",
]

TEAMMATE_MESSAGE_TAG = "teammate_message"

TEAMMATE_MESSAGE_PATTERN = re.compile(
    rf'<{TEAMMATE_MESSAGE_TAG}\s+teammate_id="([^"]+)"'
    r'(?:\s+color="([^"]+)")?'
    r'(?:\s+summary="([^"]+)")?>'
    rf'\n?(.*?)\n?</{TEAMMATE_MESSAGE_TAG}>',
    re.DOTALL,
)

# Greedy: spans from the first "{" to the last "}" in the text
_JSON_OBJECT_PATTERN = re.compile(r"\{.*\}", re.DOTALL)


class AgentMessageType(Enum):
    """Kinds of AgentMessage."""

    MESSAGE = "message"
    BROADCAST = "broadcast"
    SHUTDOWN_REQUEST = "shutdown_request"
    SHUTDOWN_RESPONSE = "shutdown_response"
    JOIN_REQUEST = "join_request"
    JOIN_APPROVED = "join_approved"
    JOIN_REJECTED = "join_rejected"
    PLAN_APPROVAL_REQUEST = "plan_approval_request"
    PLAN_APPROVAL_RESPONSE = "plan_approval_response"
    IDLE = "idle"
    MODE_CHANGE = "mode_change"


@dataclass
class AgentMessage:
    """Generic envelope routed by the MessageBus.

    Attributes:
        sender: Name of the sending agent (``from`` on the wire)
        text: Message body; may carry a serialized protocol payload
        timestamp: ISO 8601 creation time
        type: Optional message kind
    """

    sender: str
    text: str
    timestamp: str
    type: Optional[AgentMessageType] = None

    def __post_init__(self):
        if isinstance(self.type, str):
            self.type = AgentMessageType(self.type)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "from": self.sender,
            "text": self.text,
            "timestamp": self.timestamp,
        }
        if self.type is not None:
            data["type"] = self.type.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentMessage":
        return cls(
            sender=data["from"],
            text=data["text"],
            timestamp=data["timestamp"],
            type=data.get("type"),
        )


@dataclass
class TeammateMessage:
    """A message extracted from a ``<teammate_message>`` tag."""

    teammate_id: str
    content: str
    color: Optional[str] = None
    summary: Optional[str] = None


_P = TypeVar("_P", bound="_ProtocolMessage")


class _ProtocolMessage:
    """Shared camelCase codec for protocol payload dataclasses.

    Subclasses set ``TYPE`` and ``_FIELDS``, a tuple of
    ``(attribute, json_key, required)`` entries in wire order.
    """

    TYPE: ClassVar[str]
    _FIELDS: ClassVar[tuple]

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.TYPE}
        for attr, key, _required in self._FIELDS:
            value = getattr(self, attr)
            if isinstance(value, Enum):
                value = value.value
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls: Type[_P], data: Dict[str, Any]) -> _P:
        if data.get("type") != cls.TYPE:
            raise ValueError(f"Expected type '{cls.TYPE}', got {data.get('type')!r}")
        kwargs = {}
        for attr, key, required in cls._FIELDS:
            if key in data:
                kwargs[attr] = data[key]
            elif required:
                raise KeyError(key)
        return cls(**kwargs)


@dataclass
class ShutdownRequest(_ProtocolMessage):
    TYPE: ClassVar[str] = "shutdown_request"
    _FIELDS: ClassVar[tuple] = (
        ("request_id", "requestId", True),
        ("sender", "from", True),
        ("reason", "reason", False),
    )

    request_id: str
    sender: str
    reason: Optional[str] = None


@dataclass
class ShutdownResponse(_ProtocolMessage):
    TYPE: ClassVar[str] = "shutdown_response"
    _FIELDS: ClassVar[tuple] = (
        ("request_id", "requestId", True),
        ("sender", "from", True),
        ("approved", "approved", True),
        ("reason", "reason", False),
    )

    request_id: str
    sender: str
    approved: bool
    reason: Optional[str] = None


@dataclass
class JoinRequest(_ProtocolMessage):
    TYPE: ClassVar[str] = "join_request"
    _FIELDS: ClassVar[tuple] = (
        ("request_id", "requestId", True),
        ("proposed_name", "proposedName", True),
        ("capabilities", "capabilities", False),
    )

    request_id: str
    proposed_name: str
    capabilities: Optional[str] = None


@dataclass
class JoinApproved(_ProtocolMessage):
    TYPE: ClassVar[str] = "join_approved"
    _FIELDS: ClassVar[tuple] = (
        ("request_id", "requestId", True),
        ("team_name", "teamName", True),
        ("agent_id", "agentId", True),
        ("agent_name", "agentName", True),
        ("color", "color", False),
    )

    request_id: str
    team_name: str
    agent_id: str
    agent_name: str
    color: Optional[AgentColor] = None

    def __post_init__(self):
        if isinstance(self.color, str):
            self.color = AgentColor(self.color)


@dataclass
class JoinRejected(_ProtocolMessage):
    TYPE: ClassVar[str] = "join_rejected"
    _FIELDS: ClassVar[tuple] = (
        ("request_id", "requestId", True),
        ("reason", "reason", False),
    )

    request_id: str
    reason: Optional[str] = None


@dataclass
class PlanApprovalRequest(_ProtocolMessage):
    TYPE: ClassVar[str] = "plan_approval_request"
    _FIELDS: ClassVar[tuple] = (
        ("request_id", "requestId", True),
        ("sender", "from", True),
        ("plan_content", "planContent", True),
        ("plan_file_path", "planFilePath", False),
    )

    request_id: str
    sender: str
    plan_content: str
    plan_file_path: Optional[str] = None


@dataclass
class PlanApprovalResponse(_ProtocolMessage):
    TYPE: ClassVar[str] = "plan_approval_response"
    _FIELDS: ClassVar[tuple] = (
        ("request_id", "requestId", True),
        ("approved", "approved", True),
        ("feedback", "feedback", False),
    )

    request_id: str
    approved: bool
    feedback: Optional[str] = None


ProtocolPayload = Union[
    ShutdownRequest,
    ShutdownResponse,
    JoinRequest,
    JoinApproved,
    JoinRejected,
    PlanApprovalRequest,
    PlanApprovalResponse,
]

PROTOCOL_PAYLOAD_TYPES: Dict[str, Type[_ProtocolMessage]] = {
    cls.TYPE: cls
    for cls in (
        ShutdownRequest,
        ShutdownResponse,
        JoinRequest,
        JoinApproved,
        JoinRejected,
        PlanApprovalRequest,
        PlanApprovalResponse,
    )
}


# Ids

def generate_request_id(prefix: str = "req") -> str:
    """Correlation id for a request: ``<prefix>-<base36 ms>-<4 random>``.

    Raises:
        ValidationError: If the prefix is not lowercase alphanumeric/underscore
    """
    return generate_id(validate_request_prefix(prefix), random_length=4)


def generate_message_id() -> str:
    return generate_id("msg", random_length=6)


# Construction

def create_agent_message(
    sender: str,
    text: str,
    type: Optional[AgentMessageType] = None,
) -> AgentMessage:
    return AgentMessage(sender=sender, text=text, timestamp=utc_now_iso(), type=type)


def create_shutdown_request(sender: str, reason: Optional[str] = None) -> ShutdownRequest:
    return ShutdownRequest(
        request_id=generate_request_id("shutdown"),
        sender=sender,
        reason=reason,
    )


def create_shutdown_response(
    request_id: str,
    sender: str,
    approved: bool,
    reason: Optional[str] = None,
) -> ShutdownResponse:
    return ShutdownResponse(request_id=request_id, sender=sender, approved=approved, reason=reason)


def create_join_request(proposed_name: str, capabilities: Optional[str] = None) -> JoinRequest:
    return JoinRequest(
        request_id=generate_request_id("join"),
        proposed_name=proposed_name,
        capabilities=capabilities,
    )


def create_join_approved(
    request_id: str,
    team_name: str,
    agent_id: str,
    agent_name: str,
    color: Optional[AgentColor] = None,
) -> JoinApproved:
    return JoinApproved(
        request_id=request_id,
        team_name=team_name,
        agent_id=agent_id,
        agent_name=agent_name,
        color=color,
    )


def create_join_rejected(request_id: str, reason: Optional[str] = None) -> JoinRejected:
    return JoinRejected(request_id=request_id, reason=reason)


def create_plan_approval_request(
    sender: str,
    plan_content: str,
    plan_file_path: Optional[str] = None,
) -> PlanApprovalRequest:
    return PlanApprovalRequest(
        request_id=generate_request_id("plan"),
        sender=sender,
        plan_content=plan_content,
        plan_file_path=plan_file_path,
    )


def create_plan_approval_response(
    request_id: str,
    approved: bool,
    feedback: Optional[str] = None,
) -> PlanApprovalResponse:
    return PlanApprovalResponse(request_id=request_id, approved=approved, feedback=feedback)


def create_mode_change_message(mode: str, sender: str) -> str:
    """Serialized ``mode_change`` notification."""
    return json.dumps({"type": AgentMessageType.MODE_CHANGE.value, "mode": mode, "from": sender})


# Serialization

def serialize_message(message: Any) -> str:
    """Serialize a payload, envelope or plain JSON value to a JSON string."""
    if hasattr(message, "to_dict"):
        message = message.to_dict()
    return json.dumps(message)


def parse_json_message(text: str) -> Optional[Any]:
    """Extract and decode the JSON object embedded in ``text``.

    Returns:
        The decoded value, or None when no object is found or it does not parse
    """
    if not isinstance(text, str):
        return None
    match = _JSON_OBJECT_PATTERN.search(text)
    if not match:
        return None
    try:
        return json.loads(match.group(0))
    except json.JSONDecodeError:
        return None


def _parse_payload(text: str, payload_cls: Type[_P]) -> Optional[_P]:
    data = parse_json_message(text)
    if not isinstance(data, dict) or data.get("type") != payload_cls.TYPE:
        return None
    try:
        return payload_cls.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        logger.debug(f"Malformed {payload_cls.TYPE} payload: {e}")
        return None


def parse_shutdown_request(text: str) -> Optional[ShutdownRequest]:
    return _parse_payload(text, ShutdownRequest)


def parse_shutdown_response(text: str) -> Optional[ShutdownResponse]:
    return _parse_payload(text, ShutdownResponse)


def parse_join_request(text: str) -> Optional[JoinRequest]:
    return _parse_payload(text, JoinRequest)


def parse_join_approved(text: str) -> Optional[JoinApproved]:
    return _parse_payload(text, JoinApproved)


def parse_join_rejected(text: str) -> Optional[JoinRejected]:
    return _parse_payload(text, JoinRejected)


def parse_plan_approval_request(text: str) -> Optional[PlanApprovalRequest]:
    return _parse_payload(text, PlanApprovalRequest)


def parse_plan_approval_response(text: str) -> Optional[PlanApprovalResponse]:
    return _parse_payload(text, PlanApprovalResponse)


def parse_protocol_message(text: str) -> Optional[ProtocolPayload]:
    """Decode any handshake payload carried in ``text``.

    Returns:
        The matching payload dataclass, or None for non-protocol text
    """
    data = parse_json_message(text)
    if not isinstance(data, dict):
        return None
    payload_cls = PROTOCOL_PAYLOAD_TYPES.get(data.get("type"))
    if payload_cls is None:
        return None
    return _parse_payload(text, payload_cls)


def get_join_request_summary(text: str) -> Optional[str]:
    """One-line human summary of a join handshake message, if ``text`` is one."""
    request = parse_join_request(text)
    if request:
        capabilities = f" - {request.capabilities}" if request.capabilities else ""
        return f"[Join Request] {request.proposed_name} wants to join{capabilities}"

    approved = parse_join_approved(text)
    if approved:
        return f"[Join Approved] You are now {approved.agent_name} in {approved.team_name}"

    rejected = parse_join_rejected(text)
    if rejected:
        return f"[Join Rejected] {rejected.reason or 'Request was rejected'}"

    return None


# Teammate tags

def wrap_teammate_message(
    teammate_id: str,
    content: str,
    color: Optional[str] = None,
    summary: Optional[str] = None,
) -> str:
    attrs = f'teammate_id="{teammate_id}"'
    if color:
        attrs += f' color="{color}"'
    if summary:
        attrs += f' summary="{summary}"'
    return f"<{TEAMMATE_MESSAGE_TAG} {attrs}>\n{content}\n</{TEAMMATE_MESSAGE_TAG}>"


def parse_teammate_messages(text: str) -> List[TeammateMessage]:
    """Extract every well-formed teammate tag from ``text``, in order."""
    messages = []
    for match in TEAMMATE_MESSAGE_PATTERN.finditer(text):
        teammate_id, color, summary, content = match.groups()
        if teammate_id and content:
            messages.append(TeammateMessage(
                teammate_id=teammate_id,
                content=content.strip(),
                color=color,
                summary=summary,
            ))
    return messages
