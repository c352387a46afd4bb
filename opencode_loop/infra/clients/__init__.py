"""Agent runtime clients for opencode-loop.

This package contains the AgentRuntime implementations:
- opencode: OpenCode server over HTTP (httpx) and the server launcher
- claude_runtime: Claude Agent SDK, with loop_control served in-process
"""
