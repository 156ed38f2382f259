"""OpenAI-backed translators (OpenAI, DeepSeek) and speech synthesizer."""
