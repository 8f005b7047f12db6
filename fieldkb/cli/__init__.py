"""Command-line tools for fieldkb.

- ``python -m fieldkb.cli`` -- ingest docs and FAQs, re-index, search,
  inspect statistics and maintain the embedding cache.

Heavy imports are deferred inside handlers so ``--help`` stays fast.
"""
