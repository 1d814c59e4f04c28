"""Vector store service using Qdrant."""
import os
import hashlib
from typing import List, Optional
from qdrant_client import QdrantClient
from qdrant_client.models import Distance, VectorParams, PointStruct
from qdrant_client.http import models

from lexivault.utils.logger import logger


class VectorStore:
    """Service for storing and querying page embeddings in Qdrant."""

    COLLECTION_NAME = "pages"

    def __init__(self, db_path: str = "./qdrant_db", vector_size: int = 384):
        """
        Initialize Qdrant client.

        Args:
            db_path: Path to Qdrant persistent storage directory, or ":memory:"
            vector_size: Size of embedding vectors (384 for all-MiniLM-L6-v2)
        """
        self.db_path = db_path
        self.vector_size = vector_size

        if db_path == ":memory:":
            self.client = QdrantClient(location=":memory:")
        else:
            os.makedirs(db_path, exist_ok=True)
            # Use Qdrant in local/embedded mode for persistent storage
            self.client = QdrantClient(path=db_path)

        self._ensure_collection()
        logger.info(f"Qdrant initialized at {db_path} (vector size {vector_size})")

    def _generate_point_id(self, document_id: str, page_number: int) -> int:
        """
        Generate a stable integer ID for a page point.

        Args:
            document_id: Document ID
            page_number: 1-indexed page number

        Returns:
            Unique integer ID
        """
        # First 8 bytes of md5(document_id + page_number) as a positive int64
        combined = f"{document_id}_{page_number}".encode('utf-8')
        hash_bytes = hashlib.md5(combined).digest()[:8]
        point_id = int.from_bytes(hash_bytes, byteorder='big')
        return point_id & 0x7FFFFFFFFFFFFFFF

    def _ensure_collection(self):
        """Ensure the pages collection exists, create if it doesn't."""
        try:
            if not self.client.collection_exists(self.COLLECTION_NAME):
                self.client.create_collection(
                    collection_name=self.COLLECTION_NAME,
                    vectors_config=VectorParams(
                        size=self.vector_size,
                        distance=Distance.COSINE
                    )
                )
                logger.debug(f"Created Qdrant collection: {self.COLLECTION_NAME}")
        except Exception as e:
            logger.error(f"Error ensuring collection {self.COLLECTION_NAME}: {str(e)}", exc_info=True)
            raise

    def upsert_page(
        self,
        document_id: str,
        page_number: int,
        text: str,
        embedding: List[float],
    ) -> None:
        """
        Store (or overwrite) the vector of one completed page.

        Args:
            document_id: Owning document
            page_number: 1-indexed page number
            text: Page text kept in the payload for post-filtering
            embedding: Page embedding vector

        Raises:
            ValueError: If the embedding has the wrong dimension
        """
        if len(embedding) != self.vector_size:
            raise ValueError(
                f"Embedding has {len(embedding)} dimensions, expected {self.vector_size}"
            )

        point = PointStruct(
            id=self._generate_point_id(document_id, page_number),
            vector=embedding,
            payload={
                "document_id": document_id,
                "page_number": page_number,
                "text": text,
            },
        )
        self.client.upsert(collection_name=self.COLLECTION_NAME, points=[point])
        logger.debug(
            f"Stored vector for page {page_number} of document {document_id}",
            extra={"document_id": document_id, "page_number": page_number},
        )

    def search(
        self,
        query_embedding: List[float],
        top_k: int = 10,
        document_id: Optional[str] = None,
    ) -> List[dict]:
        """
        Retrieve the top-k most similar pages.

        Args:
            query_embedding: Query embedding vector
            top_k: Number of pages to retrieve
            document_id: Restrict the search to one document

        Returns:
            List of dictionaries with page data and similarity scores,
            highest score first
        """
        query_filter = None
        if document_id:
            query_filter = models.Filter(
                must=[
                    models.FieldCondition(
                        key="document_id",
                        match=models.MatchValue(value=document_id),
                    )
                ]
            )

        query_result = self.client.query_points(
            collection_name=self.COLLECTION_NAME,
            query=query_embedding,
            query_filter=query_filter,
            limit=top_k,
            with_payload=True,
        )

        pages = []
        for point in query_result.points:
            payload = point.payload or {}
            pages.append({
                "document_id": payload.get("document_id"),
                "page_number": payload.get("page_number", 0),
                "text": payload.get("text", ""),
                "similarity_score": float(point.score),
            })

        logger.debug(f"Retrieved {len(pages)} pages from vector store")
        return pages

    def count_document_points(self, document_id: str) -> int:
        result = self.client.count(
            collection_name=self.COLLECTION_NAME,
            count_filter=models.Filter(
                must=[
                    models.FieldCondition(
                        key="document_id",
                        match=models.MatchValue(value=document_id),
                    )
                ]
            ),
            exact=True,
        )
        return result.count

    def delete_document(self, document_id: str) -> None:
        """
        Delete every page vector of a document.

        Args:
            document_id: Document ID to delete
        """
        self.client.delete(
            collection_name=self.COLLECTION_NAME,
            points_selector=models.FilterSelector(
                filter=models.Filter(
                    must=[
                        models.FieldCondition(
                            key="document_id",
                            match=models.MatchValue(value=document_id),
                        )
                    ]
                )
            ),
        )
        logger.info(f"Deleted document {document_id} from vector store")

    def delete_page(self, document_id: str, page_number: int) -> None:
        self.client.delete(
            collection_name=self.COLLECTION_NAME,
            points_selector=models.PointIdsList(
                points=[self._generate_point_id(document_id, page_number)]
            ),
        )

    def close(self) -> None:
        self.client.close()
