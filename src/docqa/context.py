"""
Context Assembler
-----------------
Purpose: Join retrieved chunks into one prompt context and the parallel citation list
"""

from dataclasses import dataclass, field
import logging
from typing import List, Optional

from .models import Citation
from .vector_store import RetrievalResult

logger = logging.getLogger(__name__)

NO_CONTEXT_MARKER = "[NO RELEVANT CONTEXT]"
BLOCK_SEPARATOR = "\n\n---\n\n"


@dataclass
class AssembledContext:
    """
    Context text sent to the generator, and one citation per match used.

    citations[i] always points at the source of the i-th block in
    context_text.
    """
    context_text: str
    citations: List[Citation] = field(default_factory=list)
    matches_used: List[RetrievalResult] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.matches_used


def format_block(result: RetrievalResult, include_score: bool = False) -> str:
    """Render one match with the header the generator uses for attribution."""
    header = (
        f"[Source: {result.metadata.file}, Category: {result.category or 'General'}, "
        f"Page: {result.metadata.page}"
    )
    if include_score:
        header += f", Relevance: {result.similarity:.1%}"
    return f"{header}]\n{result.text}"


class ContextAssembler:
    """
    Builds the generator context from ranked matches.

    Blocks keep the ranked order. With ``max_context_chars`` set, trailing
    matches that would overflow the budget are left out of both the context
    and the citations; the best match is always kept.
    """

    def __init__(self, include_scores: bool = False, max_context_chars: Optional[int] = None):
        self.include_scores = include_scores
        self.max_context_chars = max_context_chars

    def assemble(self, matches: List[RetrievalResult]) -> AssembledContext:
        """
        Args:
            matches: Ranked search results

        Returns:
            AssembledContext; NO_CONTEXT_MARKER and no citations when matches is empty
        """
        if not matches:
            return AssembledContext(context_text=NO_CONTEXT_MARKER)

        blocks = []
        used = []
        length = 0
        for result in matches:
            block = format_block(result, self.include_scores)
            added = len(block) + (len(BLOCK_SEPARATOR) if blocks else 0)
            if self.max_context_chars and blocks and length + added > self.max_context_chars:
                logger.debug(
                    f"Context budget {self.max_context_chars} reached, "
                    f"dropping {len(matches) - len(used)} matches"
                )
                break
            blocks.append(block)
            used.append(result)
            length += added

        return AssembledContext(
            context_text=BLOCK_SEPARATOR.join(blocks),
            citations=[Citation.from_metadata(r.metadata) for r in used],
            matches_used=used,
        )
