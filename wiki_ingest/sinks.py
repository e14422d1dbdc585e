"""
Sinks receiving the TextUnit stream.

The pipeline only needs ``write_batch`` and ``close``; what happens to the
units (a JSONL file, a Qdrant collection) is up to the sink. Sinks are
constructed by the caller and injected, so tests can substitute their own.

Delivery is at-least-once: after an interrupt the units of a partially
processed article or block are sent again. QdrantSink derives point ids from
the unit identity so a re-sent unit overwrites itself.
"""

from __future__ import annotations

import json
import logging
import random
import time
import uuid
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from qdrant_client import QdrantClient
from qdrant_client.models import Distance, PointStruct, VectorParams

from wiki_ingest.models import TextUnit

if TYPE_CHECKING:
    from wiki_ingest.config import IngestionSettings

logger = logging.getLogger("wiki_ingest.sinks")

EmbedFunc = Callable[[list[str]], list[list[float]]]

# Stable namespace for point ids
UNIT_ID_NAMESPACE = uuid.UUID("6f1c2b0e-8d4a-5b7e-9c3f-2a1d0e4b7c91")

MAX_UPLOAD_RETRIES = 5
BASE_RETRY_DELAY = 0.5  # seconds
MAX_RETRY_DELAY = 8.0  # seconds


@runtime_checkable
class TextUnitSink(Protocol):
    """Consumer of TextUnit batches."""

    def write_batch(self, units: Sequence[TextUnit]) -> None: ...

    def close(self) -> None: ...


# =============================================================================
# JSONL
# =============================================================================


class JsonlSink:
    """Appends one JSON object per unit to a file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self.path, "a", encoding="utf-8")
        self.units_written = 0

    def write_batch(self, units: Sequence[TextUnit]) -> None:
        for unit in units:
            self._file.write(json.dumps(unit.to_payload(), ensure_ascii=False))
            self._file.write("\n")
        # Durable before the checkpoint moves past these units
        self._file.flush()
        self.units_written += len(units)

    def close(self) -> None:
        if not self._file.closed:
            self._file.close()
            logger.info(f"📝 Wrote {self.units_written:,} units to {self.path}")


# =============================================================================
# QDRANT
# =============================================================================


def unit_point_id(unit: TextUnit) -> str:
    """Deterministic point id for (article, section, position)."""
    key = f"{unit.article_id}\x1f{unit.section_name}\x1f{unit.position}"
    return str(uuid.uuid5(UNIT_ID_NAMESPACE, key))


class QdrantSink:
    """
    Embeds units and upserts them into a Qdrant collection.

    The embedding function is injected so the sink does not care which
    model (or test double) produces the vectors.
    """

    def __init__(
        self,
        client: QdrantClient,
        collection_name: str,
        embed: EmbedFunc,
        vector_size: int = 384,
        embedding_model: str | None = None,
    ):
        self.client = client
        self.collection_name = collection_name
        self.embed = embed
        self.vector_size = vector_size
        self.embedding_model = embedding_model
        self.points_upserted = 0
        self.ensure_collection()

    def ensure_collection(self) -> None:
        if self.client.collection_exists(self.collection_name):
            logger.info(f"Collection '{self.collection_name}' exists, using it.")
            return

        logger.info(f"Creating Qdrant collection: {self.collection_name}")
        self.client.create_collection(
            collection_name=self.collection_name,
            vectors_config=VectorParams(size=self.vector_size, distance=Distance.COSINE),
        )

    def _to_points(self, units: Sequence[TextUnit]) -> list[PointStruct]:
        vectors = self.embed([unit.content for unit in units])
        if len(vectors) != len(units):
            raise ValueError(
                f"Embedding function returned {len(vectors)} vectors for {len(units)} texts"
            )

        points = []
        for unit, vector in zip(units, vectors, strict=True):
            payload = unit.to_payload()
            if self.embedding_model:
                payload["embeddingModel"] = self.embedding_model
            points.append(PointStruct(id=unit_point_id(unit), vector=list(vector), payload=payload))
        return points

    def write_batch(self, units: Sequence[TextUnit]) -> None:
        if not units:
            return
        points = self._to_points(units)

        for attempt in range(MAX_UPLOAD_RETRIES):
            try:
                self.client.upsert(collection_name=self.collection_name, points=points, wait=True)
                break
            except Exception as e:
                if attempt >= MAX_UPLOAD_RETRIES - 1:
                    logger.error(f"❌ Qdrant upload failed after {MAX_UPLOAD_RETRIES} attempts: {e}")
                    raise
                delay = min(
                    BASE_RETRY_DELAY * (2**attempt) + random.uniform(0, 0.2), MAX_RETRY_DELAY
                )
                logger.warning(
                    f"⚠️ Qdrant upload failed (attempt {attempt + 1}/{MAX_UPLOAD_RETRIES}): {e}. "
                    f"Retrying in {delay:.2f}s..."
                )
                time.sleep(delay)

        self.points_upserted += len(points)

    def close(self) -> None:
        logger.info(f"📤 Upserted {self.points_upserted:,} points to '{self.collection_name}'")
        self.client.close()


def build_sentence_encoder(model_name: str, device: str | None = None) -> EmbedFunc:
    """
    Load a sentence-transformers model and wrap it as an embedding function.

    Requires the ``embeddings`` extra.
    """
    from sentence_transformers import SentenceTransformer

    model = SentenceTransformer(model_name, device=device)
    logger.info(f"🧠 Loaded embedding model {model_name} on {model.device}")

    def embed(texts: list[str]) -> list[list[float]]:
        vectors = model.encode(
            texts,
            show_progress_bar=False,
            normalize_embeddings=True,
            convert_to_numpy=True,
        )
        return vectors.tolist()

    return embed


def build_sink(settings: IngestionSettings) -> TextUnitSink:
    """Create the sink selected in the settings."""
    if settings.sink == "qdrant":
        api_key = settings.qdrant_api_key.get_secret_value() if settings.qdrant_api_key else None
        client = QdrantClient(host=settings.qdrant_host, port=settings.qdrant_port, api_key=api_key)
        return QdrantSink(
            client=client,
            collection_name=settings.collection,
            embed=build_sentence_encoder(settings.embedding_model, settings.embedding_device),
            vector_size=settings.vector_size,
            embedding_model=settings.embedding_model,
        )
    return JsonlSink(settings.output_path)
