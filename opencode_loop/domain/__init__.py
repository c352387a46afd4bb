"""Domain layer package.

This package contains the pure loop policy:
- status: loop_control classification into turn verdicts
- prompts: prompt loading and the re-prompt escalation policy
"""
