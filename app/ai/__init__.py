"""
AI Company Workflow Engine
AI module.

Submodules:
    - gateway: LLM Gateway (model-family routing, retry with backoff, local stub)
    - prompt_registry: built-in prompt templates with YAML overrides
"""
