"""
Core Application Layer - Orchestration and Configuration
==========================================================

Modules:
    agent_manager: Composition root; startup, per-message sends, shutdown
    constants: Configuration values and Pydantic settings validation
    exceptions: Error hierarchy surfaced to the UI
"""
