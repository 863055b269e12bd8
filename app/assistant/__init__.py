"""Generative assistant: providers, prompts, tools and the reply orchestrator."""
