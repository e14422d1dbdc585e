"""Unit tests for sinks."""
from __future__ import annotations

import json
import sys
from unittest.mock import MagicMock, patch

import pytest

from wiki_ingest.config import IngestionSettings
from wiki_ingest.models import TextUnit
from wiki_ingest.sinks import (
    JsonlSink,
    QdrantSink,
    TextUnitSink,
    build_sentence_encoder,
    build_sink,
    unit_point_id,
)


def make_unit(article_id: str = "1", position: int = 0, section: str = "") -> TextUnit:
    return TextUnit(
        article_id=article_id,
        article_title=f"Article {article_id}",
        section_name=section,
        position=position,
        content=f"Paragraph {position} of {article_id}",
    )


def fake_embed(texts: list[str]) -> list[list[float]]:
    return [[float(len(t)), 0.0, 1.0] for t in texts]


class TestJsonlSink:
    """Test the JSONL sink."""

    def test_writes_payloads(self, tmp_path):
        """Test one camelCase object per line."""
        path = tmp_path / "out" / "units.jsonl"
        sink = JsonlSink(path)
        sink.write_batch([make_unit("1", 0), make_unit("1", 1, "History")])
        sink.close()

        rows = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
        assert rows[1] == {
            "articleId": "1",
            "articleTitle": "Article 1",
            "sectionName": "History",
            "paragraphPosition": 1,
            "content": "Paragraph 1 of 1",
        }
        assert sink.units_written == 2

    def test_appends_across_runs(self, tmp_path):
        """Test a resumed run appends to the same file."""
        path = tmp_path / "units.jsonl"
        for article_id in ("1", "2"):
            sink = JsonlSink(path)
            sink.write_batch([make_unit(article_id)])
            sink.close()
        assert len(path.read_text(encoding="utf-8").splitlines()) == 2

    def test_protocol(self, tmp_path):
        """Test JsonlSink satisfies the sink protocol."""
        sink = JsonlSink(tmp_path / "u.jsonl")
        assert isinstance(sink, TextUnitSink)
        sink.close()


class TestQdrantSink:
    """Test the Qdrant sink with a mocked client."""

    def test_creates_missing_collection(self):
        """Test the collection is created with the vector size."""
        client = MagicMock()
        client.collection_exists.return_value = False
        QdrantSink(client, "wiki-paragraph-20240101", fake_embed, vector_size=3)

        client.create_collection.assert_called_once()
        kwargs = client.create_collection.call_args.kwargs
        assert kwargs["collection_name"] == "wiki-paragraph-20240101"
        assert kwargs["vectors_config"].size == 3

    def test_existing_collection_reused(self):
        """Test an existing collection is not recreated."""
        client = MagicMock()
        client.collection_exists.return_value = True
        QdrantSink(client, "c", fake_embed, vector_size=3)
        client.create_collection.assert_not_called()

    def test_upsert_points(self):
        """Test units become points with payloads and deterministic ids."""
        client = MagicMock()
        client.collection_exists.return_value = True
        sink = QdrantSink(client, "c", fake_embed, vector_size=3, embedding_model="m")
        units = [make_unit("1", 0), make_unit("1", 1)]
        sink.write_batch(units)

        points = client.upsert.call_args.kwargs["points"]
        assert [p.id for p in points] == [unit_point_id(u) for u in units]
        assert points[0].payload["paragraphPosition"] == 0
        assert points[0].payload["embeddingModel"] == "m"
        assert points[0].vector == [float(len(units[0].content)), 0.0, 1.0]
        assert sink.points_upserted == 2

    def test_point_ids_stable(self):
        """Test a re-delivered unit maps to the same point."""
        assert unit_point_id(make_unit("7", 3)) == unit_point_id(make_unit("7", 3))
        assert unit_point_id(make_unit("7", 3)) != unit_point_id(make_unit("7", 4))
        assert unit_point_id(make_unit("7", 0, "A")) != unit_point_id(make_unit("7", 0, "B"))

    def test_embedding_count_mismatch(self):
        """Test a broken embedding function is reported."""
        client = MagicMock()
        client.collection_exists.return_value = True
        sink = QdrantSink(client, "c", lambda texts: [], vector_size=3)
        with pytest.raises(ValueError):
            sink.write_batch([make_unit()])
        client.upsert.assert_not_called()

    def test_upload_retries_then_raises(self, monkeypatch):
        """Test persistent upload errors propagate after retries."""
        monkeypatch.setattr("wiki_ingest.sinks.time.sleep", lambda s: None)
        client = MagicMock()
        client.collection_exists.return_value = True
        client.upsert.side_effect = ConnectionError("refused")
        sink = QdrantSink(client, "c", fake_embed, vector_size=3)

        with pytest.raises(ConnectionError):
            sink.write_batch([make_unit()])
        assert client.upsert.call_count == 5

    def test_close_closes_client(self):
        """Test the client is closed with the sink."""
        client = MagicMock()
        client.collection_exists.return_value = True
        QdrantSink(client, "c", fake_embed).close()
        client.close.assert_called_once()


class TestBuildSink:
    """Test sink selection."""

    def test_jsonl_default(self, tmp_path):
        """Test the default sink writes to the output file."""
        settings = IngestionSettings(
            dump_file="d.xml", dump_date="20240101", output_file=str(tmp_path / "o.jsonl")
        )
        sink = build_sink(settings)
        assert isinstance(sink, JsonlSink)
        sink.close()

    def test_sentence_encoder(self):
        """Test the encoder wraps SentenceTransformer.encode into lists."""
        model = MagicMock()
        model.encode.return_value.tolist.return_value = [[0.1, 0.2]]
        module = MagicMock()
        module.SentenceTransformer.return_value = model

        with patch.dict(sys.modules, {"sentence_transformers": module}):
            embed = build_sentence_encoder("all-MiniLM-L12-v2", device="cpu")

        assert embed(["text"]) == [[0.1, 0.2]]
        module.SentenceTransformer.assert_called_once_with("all-MiniLM-L12-v2", device="cpu")
        assert model.encode.call_args.kwargs["normalize_embeddings"] is True
