"""topicspaces - Consolidate LLM-assigned post topics into Topic Spaces."""

__version__ = "0.1.0"
