"""Agent package exposing the LLM narration agent."""

from .llm_agent import LLMAgent

__all__ = ["LLMAgent"]
