"""
Integrations Module - Agent Process and Protocol
=================================================

Modules:
    tool_locator: Resolve the bundled or development tool layout
    process_supervisor: Spawn, health-check and kill agent processes
    session_channel: Create sessions and send messages (HTTP or per-call CLI)
    event_stream: SSE and NDJSON event decoding
    status_normalizer: Agent events to UI status updates
    credentials: Provider API keys in the system keychain
"""
