"""AI Provider Implementations.

Contains chapter translators for different providers (OpenAI, DeepSeek, Groq), each
implementing the ``ChapterTranslator`` interface, and OpenAI speech synthesis.
"""
