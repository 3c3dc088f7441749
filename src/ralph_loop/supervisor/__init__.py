"""Supervision loop for external coding-agent CLIs.

The agent process is treated as an opaque event stream. Each line is
classified into a small event vocabulary, byte counts feed a context-size
estimate, and stuck patterns (the same command failing over and over, the
same file rewritten in a tight window) are detected from the stream alone.
The iteration controller turns the resulting signals into continue, rotate,
gutter, or complete decisions, using the task checklist on disk as the
source of truth for completion.
"""
