"""Shared types and protocols.

This package contains the leaf-level data model and the protocols that
decouple the orchestrator from runtimes and presentation:
- models: TaskStatus, IterationRecord, RunReport and friends
- protocols: AgentRuntime and LoopEventSink
"""
