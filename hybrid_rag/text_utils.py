"""
Text Utilities for Lexical Retrieval
Tokenizer used by the BM25 index and query-text escaping for the lexical branch
"""
import re
import unicodedata


# Common English words ignored by the sparse search
STOPWORDS = {
    "a", "an", "and", "are", "as", "at", "be", "but", "by", "for", "if",
    "in", "into", "is", "it", "no", "not", "of", "on", "or", "such",
    "that", "the", "their", "then", "there", "these", "they", "this",
    "to", "was", "will", "with", "what", "which", "who", "how", "do",
    "does", "did", "can", "i", "you", "we", "me", "my", "your",
}


def normalize_text(text: str) -> str:
    """Normalize text: lowercase, remove accents, clean whitespace"""
    text = text.lower()

    text = unicodedata.normalize('NFD', text)
    text = ''.join(c for c in text if unicodedata.category(c) != 'Mn')

    return ' '.join(text.split())


def tokenize(text: str, remove_stopwords: bool = True) -> list[str]:
    """
    Simple tokenizer for BM25
    - Lowercase, accents stripped
    - Keeps numbers and IDs (3.14, ABC-123)
    - Optionally removes stopwords
    """
    text = normalize_text(text or "")

    tokens = re.findall(r'\b[a-z0-9]+(?:[.\-][a-z0-9]+)*\b', text)

    if remove_stopwords:
        return [t for t in tokens if len(t) > 1 and t not in STOPWORDS]
    return [t for t in tokens if len(t) > 1]


def escape_query_text(text: str) -> str:
    """Escape double quotes before the text is embedded in a lexical match clause"""
    return text.replace('"', '\\"')
