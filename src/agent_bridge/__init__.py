"""
Agent Bridge - Desktop chat front end for a local coding agent
================================================================

Launches an agent CLI (``opencode``) as a child process, keeps one
conversation session with it, and turns its event stream into short
human-readable status lines while each message is in flight.

Modules:
    core: Agent manager, configuration constants, exception hierarchy
    integrations: Tool location, process supervision, session channels,
        event stream, status normalization, credentials
    models: Pydantic models for agent events, API payloads, status updates, errors
    utils: Logging, HTTP logging, HTTP client factory

Example:
    Send one message::

        from agent_bridge.core.agent_manager import AgentManager

        async with AgentManager(notifier=print) as manager:
            answer = await manager.send("Summarize README.md", "anthropic", "claude-sonnet-4-5")
"""

__version__ = "0.1.0"
