"""
Models Module - Data Models and Type Definitions
=================================================

Pydantic v2 models shared by the HTTP layer, the turn core and the store.

Modules:
    chat_models: Messages, content parts and tool invocations
    event_models: Generation events from the model gateway and NDJSON stream frames
    store_models: Chats, document versions and suggestions as persisted
    api_models: Request and response schemas for the HTTP API
    error_models: ErrorCode catalog, HTTP status mapping and error payloads

Example:
    Building a user message and a stream frame::

        from models.chat_models import Message
        from models.event_models import StreamEvent

        message = Message(role="user", content="What's the weather in Paris?")
        frame = StreamEvent(seq=1, stream="message", type="text-delta", content="Sunny")
"""
