import logging
from typing import List
from dataclasses import dataclass

logger = logging.getLogger(__name__)


class OverlappingEditError(RuntimeError):
    """Two edits partially overlap; neither contains the other."""


@dataclass
class TextEdit:
    """Replace source[start_byte:end_byte] with text."""
    start_byte: int
    end_byte: int
    text: str


class RewriteBuffer:
    """
    Collects text edits against an immutable source and renders them.

    Offsets always refer to the original source.  Edits are applied
    bottom-up (reverse order) so earlier offsets stay valid.  An edit whose
    range covers previously registered edits subsumes them: callers build
    its replacement from ``get_rewritten_text()``, which already contains
    the nested edits.
    """

    def __init__(self, source: bytes):
        self.source = source
        self.edits: List[TextEdit] = []

    def __len__(self) -> int:
        return len(self.edits)

    def remove(self, start_byte: int, end_byte: int):
        self.replace(start_byte, end_byte, "")

    def insert(self, offset: int, text: str):
        self.replace(offset, offset, text)

    def replace(self, start_byte: int, end_byte: int, text: str):
        if not 0 <= start_byte <= end_byte <= len(self.source):
            raise ValueError(f"Invalid edit range {start_byte}-{end_byte}")

        kept = []
        for edit in self.edits:
            if edit.end_byte <= start_byte or end_byte <= edit.start_byte:
                kept.append(edit)
                continue
            if start_byte <= edit.start_byte and edit.end_byte <= end_byte:
                # subsumed
                continue
            if edit.start_byte <= start_byte and end_byte <= edit.end_byte:
                raise OverlappingEditError(
                    f"Edit {start_byte}-{end_byte} falls inside already rewritten "
                    f"range {edit.start_byte}-{edit.end_byte}")
            raise OverlappingEditError(
                f"Edit {start_byte}-{end_byte} overlaps {edit.start_byte}-{edit.end_byte}")

        kept.append(TextEdit(start_byte, end_byte, text))
        self.edits = kept

    def get_rewritten_text(self, start_byte: int, end_byte: int) -> str:
        """Text of an original range with the edits inside it applied."""
        inner = [e for e in self.edits
                 if start_byte <= e.start_byte and e.end_byte <= end_byte]
        return self._apply(self.source[start_byte:end_byte], inner, start_byte)

    def render(self) -> str:
        return self._apply(self.source, self.edits, 0)

    @staticmethod
    def _apply(content: bytes, edits: List[TextEdit], base: int) -> str:
        sorted_edits = sorted(edits, key=lambda e: (e.start_byte, e.end_byte), reverse=True)

        new_content = bytearray(content)
        for edit in sorted_edits:
            start = edit.start_byte - base
            end = edit.end_byte - base
            new_content[start:end] = edit.text.encode("utf-8")

        return new_content.decode("utf-8", errors="replace")
