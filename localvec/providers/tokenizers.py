"""
Tokenizer providers.
"""

from .base import get_registry


class TiktokenTokenizer:
    """
    Byte-pair tokenizer backed by tiktoken.

    The encoding is loaded on first use, since tiktoken may download
    its BPE ranks the first time an encoding is requested.
    """

    def __init__(self, encoding: str = "cl100k_base"):
        self.encoding_name = encoding
        self._encoding = None

    def _get_encoding(self):
        if self._encoding is None:
            import tiktoken
            self._encoding = tiktoken.get_encoding(self.encoding_name)
        return self._encoding

    def encode(self, text: str) -> list[int]:
        return self._get_encoding().encode(text, disallowed_special=())

    def decode(self, tokens: list[int]) -> str:
        return self._get_encoding().decode(list(tokens))


# Register provider
_registry = get_registry()
_registry.register_tokenizer("tiktoken", TiktokenTokenizer)
