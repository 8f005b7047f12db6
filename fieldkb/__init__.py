"""fieldkb -- knowledge base retrieval for a field-service assistant.

Ingests help-center documents and FAQ entries, embeds them, and answers
support questions with ranked, LLM-ready context.  Entry point for
applications: :func:`fieldkb.main.build_knowledge_base`.
"""

__version__ = "0.1.0"
