"""Static seed data for the knowledge base."""

from fieldkb.data.faq_seeds import FAQ_SEEDS

__all__ = ["FAQ_SEEDS"]
