"""Loop orchestration: the iteration state machine and its factory."""
