"""
Utils Module - Logging and HTTP Support
========================================

Modules:
    logger: Structured JSON logging with rotation and redaction
    http_logger: httpx event hooks for request/response debugging
    client_factory: httpx client construction for the agent server
"""
