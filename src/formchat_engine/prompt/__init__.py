"""Prompt composition for outbound chat messages.

Provides ``PromptManager``, a Jinja2-based renderer that turns typed field
models into outbound prompt shapes (text, reply buttons, or a list) and
renders the fixed notices the engine sends (completion, no session, ...).
"""

from formchat_engine.prompt.manager import PromptManager

__all__ = ["PromptManager"]
