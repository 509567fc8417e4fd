"""
Core Application Layer - Turn Orchestration and Configuration
=============================================================

Modules:
    orchestrator: State machine that drives one user turn end to end
    multiplexer: Ordered merge of the message stream and tool sub-streams
    message_utils: History expansion and the persisted message shape
    cancellation: Cancellation token shared by a turn and its tools
    persistence: ChatStore protocol the core persists through
    exceptions: AppException hierarchy keyed by ErrorCode
    prompts: System prompt and nested-generation prompts
    constants: Model catalog, limits and Pydantic settings

Turn lifecycle (orchestrator.py):
    ``prepare`` validates the request and the caller's ownership of the chat
    before anything is streamed, so failures still map to an HTTP status.
    ``run`` alternates model steps and tool execution, persists the turn once
    and always ends the multiplexer with exactly one ``turn`` finish frame.

Configuration (constants.py):
    Settings are read from the environment and ``.env`` files with
    pydantic-settings and cached behind ``get_settings()``.

See Also:
    :mod:`tools`: Tools the model can call during a turn
    :mod:`integrations.model_gateway`: Streaming model calls
"""
