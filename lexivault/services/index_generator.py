"""Outline generation over a document's completed pages."""
import asyncio
from typing import List, Sequence

from lexivault.models.document import IndexEntry, PageStatus, PageUnit
from lexivault.services.document_store import DocumentStore
from lexivault.services.recognition_client import RecognitionClient
from lexivault.utils.logger import logger
from lexivault.utils.metrics import INDEX_GENERATIONS

DEFAULT_OUTLINE_MAX_CHARS = 500_000


def build_outline_input(pages: Sequence[PageUnit], max_chars: int = DEFAULT_OUTLINE_MAX_CHARS) -> str:
    """
    Concatenate page texts into numbered page blocks.

    Args:
        pages: Completed pages in page order
        max_chars: Hard cap on the returned text length

    Returns:
        ``<page number="N">`` blocks separated by blank lines, truncated to max_chars
    """
    blocks = [f'<page number="{page.page_number}">\n{page.text}\n</page>' for page in pages]
    return "\n\n".join(blocks)[:max_chars]


class IndexGenerator:
    """Derives and stores the structural outline of a published document."""

    def __init__(
        self,
        store: DocumentStore,
        recognition_client: RecognitionClient,
        max_chars: int = DEFAULT_OUTLINE_MAX_CHARS,
    ):
        """
        Initialize index generator.

        Args:
            store: Document store holding pages and index entries
            recognition_client: Client used to request the outline
            max_chars: Maximum characters of page text sent for outlining
        """
        self.store = store
        self.recognition_client = recognition_client
        self.max_chars = max_chars

    async def generate_index(self, document_id: str) -> bool:
        """
        Generate the outline of a document and replace its stored index.

        Failures are logged and leave the existing index untouched.

        Args:
            document_id: Document to index

        Returns:
            True if the index was replaced, False otherwise
        """
        try:
            pages = await asyncio.to_thread(
                self.store.list_page_units, document_id, status=PageStatus.COMPLETED
            )
            if not pages:
                logger.warning(
                    f"No completed pages to index for document {document_id}",
                    extra={"document_id": document_id},
                )
                INDEX_GENERATIONS.labels(outcome="skipped").inc()
                return False

            items = await self.recognition_client.generate_outline(
                build_outline_input(pages, self.max_chars)
            )

            all_pages = await asyncio.to_thread(self.store.list_page_units, document_id)
            page_numbers = {page.page_number for page in all_pages}
            entries: List[IndexEntry] = []
            for item in items:
                if item.target_page not in page_numbers:
                    logger.warning(
                        f"Dropping outline entry '{item.label}' pointing at missing page {item.target_page}",
                        extra={"document_id": document_id, "page_number": item.target_page},
                    )
                    continue
                entries.append(
                    IndexEntry(
                        document_id=document_id,
                        position=len(entries),
                        label=item.label,
                        level=item.level,
                        target_page=item.target_page,
                    )
                )

            if not entries:
                logger.warning(
                    f"Outline for document {document_id} has no usable entries",
                    extra={"document_id": document_id},
                )
                INDEX_GENERATIONS.labels(outcome="failed").inc()
                return False

            await asyncio.to_thread(self.store.replace_index, document_id, entries)

        except Exception as e:
            logger.error(
                f"Index generation failed for document {document_id}: {str(e)}",
                extra={"document_id": document_id},
                exc_info=True,
            )
            INDEX_GENERATIONS.labels(outcome="failed").inc()
            return False

        INDEX_GENERATIONS.labels(outcome="succeeded").inc()
        logger.info(
            f"Stored {len(entries)} index entries for document {document_id}",
            extra={"document_id": document_id, "index_entries": len(entries)},
        )
        return True
