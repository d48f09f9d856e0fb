"""
Shared helpers for the JSON event frames exchanged over the relay WebSocket.
Format: one UTF-8 JSON object per text frame, with a string "type" field naming the event.
"""
import json

# client -> server
SEND_MESSAGE = 'sendMessage'
BLOB_UPLOAD_COMPLETE = 'blobUploadComplete'

# server -> client
CONNECTED = 'CONNECTED'
NEW_MESSAGE = 'newMessage'
REQUEST_BLOB_UPLOAD = 'requestBlobUpload'
MESSAGE_EXPIRED = 'messageExpired'
ERROR = 'ERROR'


class ProtocolError(ValueError):
    """Raised when a frame is not a JSON object with a string type."""


def encode_event(event_type, **fields):
    obj = {'type': event_type}
    obj.update(fields)
    return json.dumps(obj, separators=(',', ':'))


def decode_event(text):
    try:
        obj = json.loads(text)
    except json.JSONDecodeError as e:
        raise ProtocolError('invalid json') from e
    if not isinstance(obj, dict):
        raise ProtocolError('frame must be a json object')
    if not isinstance(obj.get('type'), str) or not obj['type']:
        raise ProtocolError('missing type')
    return obj


def error_event(why):
    return encode_event(ERROR, why=why)
