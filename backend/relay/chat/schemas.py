"""Pydantic models for the chat relay protocol.

A chat record is a tagged union keyed on ``tipo``:
    - TextRecord:  opaque ``cipherText`` + ``iv`` produced by the client.
    - MediaRecord: URLs of an uploaded image and its pixelated thumbnail.

The server never decodes ``cipherText`` or ``iv``. Field names are the exact
keys used on the wire, so ``model_dump()`` is what clients receive.
"""
from enum import Enum
from typing import Annotated, Dict, List, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class MessageKind(str, Enum):
    """Kind of chat record."""
    TEXT = "text"
    MEDIA = "media"


class EventType(str, Enum):
    """Event names used on the WebSocket channel.

    Client to server: AUTH, JOIN, MESSAGE, REACTION.
    Server to client: everything else, plus MESSAGE for broadcasts.
    """
    IDENTITY = "identidad"
    AUTH = "auth"
    AUTH_OK = "auth-ok"
    AUTH_DENIED = "auth-denegado"
    JOIN = "join"
    JOIN_OK = "joinOk"
    JOIN_ERROR = "joinError"
    HISTORY = "historial"
    MESSAGE = "mensaje"
    REACTION = "reaccion"
    REACTION_UPDATED = "reaccion-actualizada"


# emoji -> reactor ids (unique, order irrelevant)
Reactions = Dict[str, List[str]]


class _RecordBase(BaseModel):
    id: str = Field(..., description="Server-generated message ID")
    autor: str = Field(..., description="Anonymous tag or display name of the sender")
    fecha: str = Field(..., description="Client-supplied or server locale time string")
    reacciones: Reactions = Field(default_factory=dict, description="emoji -> reactor ids")


class TextRecord(_RecordBase):
    """Encrypted text message."""
    tipo: Literal["text"] = "text"
    cipherText: str = Field(..., min_length=1, description="Opaque ciphertext")
    iv: str = Field(..., min_length=1, description="Opaque initialization vector")


class MediaRecord(_RecordBase):
    """Image message pointing at files produced by POST /upload."""
    tipo: Literal["media"] = "media"
    urlFull: str = Field(..., min_length=1)
    urlThumb: str = Field(..., min_length=1)
    mimeType: str = Field(default="")
    byteSize: int = Field(default=0, ge=0)
    originalName: str = Field(default="")


AnyRecord = Union[TextRecord, MediaRecord]

ChatRecord = Annotated[Union[TextRecord, MediaRecord], Field(discriminator="tipo")]

chat_record_adapter: TypeAdapter = TypeAdapter(ChatRecord)


def record_to_wire(record: AnyRecord) -> dict:
    """Serialize a record for the wire or a document store."""
    return record.model_dump(mode="json")


def record_from_wire(data: dict) -> AnyRecord:
    """Rebuild a record from its wire/document form.

    Raises:
        pydantic.ValidationError: If *data* is not a complete record.
    """
    return chat_record_adapter.validate_python(data)


class ReactionUpdate(BaseModel):
    """Payload of the ``reaccion-actualizada`` broadcast."""
    mensajeId: str
    reacciones: Reactions
