"""
Customer Reply Engine

A retrieval-augmented reply pipeline that turns a customer query into a grounded,
tone-adjusted and correctly localized reply, combining vector-similarity knowledge
retrieval, language/sentiment/intent analysis and a feedback loop that learns from
human-edited replies.
"""

__version__ = "1.0.0"
__author__ = "Customer Reply Engine Team"
