# Wire and in-memory models for relayed messages and stored files.
from datetime import datetime, timezone
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


def _utcnow():
    return datetime.now(timezone.utc)


class DirectMedia(BaseModel):
    """Body of a message whose media the client already uploaded out of band."""
    kind: Literal['media'] = 'media'
    url: str
    text: str = ''


class TextWithReferences(BaseModel):
    """Body of a plain text message that may reference not-yet-uploaded media keys."""
    kind: Literal['text'] = 'text'
    text: str = ''


MessageBody = Annotated[Union[DirectMedia, TextWithReferences], Field(discriminator='kind')]


class MessageIn(BaseModel):
    # what clients send inside a sendMessage frame
    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    id: Union[int, str]
    text: str = ''
    is_media: bool = Field(False, alias='isMedia')
    media_url: Optional[str] = Field(None, alias='mediaUrl')


class Message(BaseModel):
    id: Union[int, str]
    sender: str
    body: MessageBody
    created_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def from_wire(cls, payload: MessageIn, sender: str) -> 'Message':
        if payload.is_media and payload.media_url:
            body = DirectMedia(url=payload.media_url, text=payload.text)
        else:
            body = TextWithReferences(text=payload.text)
        return cls(id=payload.id, sender=sender, body=body)

    @property
    def text(self) -> str:
        return self.body.text

    def to_wire(self) -> dict:
        out = {
            'id': self.id,
            'sender': self.sender,
            'text': self.body.text,
            'createdAt': self.created_at.isoformat(),
        }
        if isinstance(self.body, DirectMedia):
            out['isMedia'] = True
            out['mediaUrl'] = self.body.url
        return out


class UploadResult(BaseModel):
    key: str
    url: str
    name: str
    size: int


class FileInfo(BaseModel):
    name: str
    scope: Literal['public', 'archived']
    size: int
    created_at: float
    url: Optional[str] = None
