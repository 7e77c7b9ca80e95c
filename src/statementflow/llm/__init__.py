"""LLM extraction: output contract, prompts and the Gemini client."""
