"""
Integrations Module - External System Integrations
===================================================

Modules:
    model_gateway: ModelGateway protocol and its OpenAI chat completions implementation

The gateway is the only place that knows the provider's wire format. It turns
streamed chunks into generation events (text deltas, assembled tool calls,
step and stream finishes), retries connection failures before any output, and
bounds a turn to ``max_steps`` model calls.
"""
