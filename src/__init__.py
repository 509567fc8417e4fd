"""
Quill Chat - Streaming chat with tool calling and document drafting
===================================================================

One user turn streams as NDJSON frames: the model's text, its tool calls and
their results on the ``message`` sub-stream, live tool output (document
drafts, writing suggestions) on ``tool:<call id>`` sub-streams, and a single
terminal ``turn`` frame.

Modules:
    api: FastAPI app, routes, auth and the PostgreSQL chat store
    core: Turn orchestrator, stream multiplexer, settings and exceptions
    tools: Tool registry, execution coordinator and the built-in tools
    integrations: Model gateway over the OpenAI chat completions API
    models: Pydantic models for messages, events, records and API schemas
    utils: Logging, metrics, database and client helpers

Example:
    Running one turn outside the HTTP layer::

        from core.multiplexer import StreamMultiplexer
        from core.orchestrator import TurnOrchestrator, TurnRequest
        from tools import ToolCoordinator, build_default_registry

        registry = build_default_registry()
        multiplexer = StreamMultiplexer()
        orchestrator = TurnOrchestrator(
            gateway=gateway,
            coordinator=ToolCoordinator(registry),
            registry=registry,
            store=store,
            multiplexer=multiplexer,
            http_client=http_client,
            settings=settings,
        )
        await orchestrator.prepare(request, user)
        task = asyncio.create_task(orchestrator.run())
        async for line in multiplexer.frames():
            ...
"""
