"""
Models Module - Data Models and Type Definitions
=================================================

Modules:
    event_models: Agent server events and per-call run records
    api_models: Session and prompt request/response payloads
    status_models: Status updates delivered to the UI
    error_models: Error codes and error payloads
"""
