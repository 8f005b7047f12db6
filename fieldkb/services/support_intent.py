"""Keyword heuristic that decides whether a chat message is a support question.

Used upstream to route a message to knowledge base retrieval rather than
to a command/action pipeline.  A false positive only costs one extra
context lookup, so the gate is a plain phrase match instead of a model.
"""

from __future__ import annotations

# Portuguese and English support-intent phrases, matched as substrings of
# the lower-cased message.
SUPPORT_PHRASES: tuple[str, ...] = (
    # Portuguese
    "como faço",
    "como faco",
    "como fazer",
    "como posso",
    "como funciona",
    "como usar",
    "como configurar",
    "o que é",
    "o que e ",
    "o que significa",
    "para que serve",
    "onde fica",
    "onde encontro",
    "onde está",
    "por que",
    "por quê",
    "não consigo",
    "nao consigo",
    "não funciona",
    "nao funciona",
    "não está funcionando",
    "está dando erro",
    "deu erro",
    "preciso de ajuda",
    "me ajuda",
    "ajuda com",
    "tenho uma dúvida",
    "dúvida sobre",
    "é possível",
    "tem como",
    # English
    "how do i",
    "how to",
    "how can i",
    "how does",
    "what is",
    "what does",
    "where is",
    "where can i",
    "why is",
    "why does",
    "not working",
    "doesn't work",
    "does not work",
    "can't",
    "cannot",
    "i need help",
    "help with",
    "is it possible",
)

# Messages at least this long that end in "?" count as questions even
# without a known phrase.
_MIN_QUESTION_LENGTH = 16


def is_support_question(message: str) -> bool:
    """Return ``True`` when *message* looks like a how-to or troubleshooting question.

    >>> is_support_question("como faço para criar um cliente")
    True
    >>> is_support_question("crie um cliente João")
    False
    """
    text = message.lower().strip()
    if not text:
        return False
    if any(phrase in text for phrase in SUPPORT_PHRASES):
        return True
    return len(text) >= _MIN_QUESTION_LENGTH and text.endswith("?")
