"""Unit tests for run configuration and the CLI."""
from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from wiki_ingest.__main__ import build_parser, main
from wiki_ingest.checkpoint import CheckpointParams, create_initial_checkpoint, save_checkpoint
from wiki_ingest.config import IngestionSettings


class TestIngestionSettings:
    """Test settings validation and derived values."""

    def test_defaults(self):
        """Test defaults and derived names."""
        settings = IngestionSettings(dump_file="enwiki.xml", dump_date="20240101")
        assert settings.strategy == "paragraph"
        assert settings.batch_size == 100
        assert settings.checkpoint_interval == 100
        assert settings.collection == "wiki-paragraph-20240101"
        assert settings.checkpoint_path == Path("indexing-checkpoint-paragraph.json")
        assert settings.output_path == Path("wiki-paragraph-20240101.jsonl")
        assert not settings.parallel_mode

    def test_streams_require_index(self):
        """Test multi-block mode needs an index file."""
        with pytest.raises(ValidationError, match="index-file"):
            IngestionSettings(dump_file="enwiki.xml.bz2", dump_date="20240101", streams=4)

    def test_index_requires_bz2_dump(self):
        """Test an index is only accepted for bz2 dumps."""
        with pytest.raises(ValidationError, match="bz2"):
            IngestionSettings(dump_file="enwiki.xml", dump_date="20240101", index_file="i.txt")

    def test_parallel_mode(self):
        """Test parallel mode needs both an index and several streams."""
        settings = IngestionSettings(
            dump_file="enwiki.xml.bz2", dump_date="20240101", index_file="i.txt.bz2", streams=4
        )
        assert settings.parallel_mode
        single = settings.model_copy(update={"streams": 1})
        assert not single.parallel_mode

    @pytest.mark.parametrize(
        "overrides",
        [
            {"dump_date": "2024-01-01"},
            {"batch_size": 0},
            {"batch_size": 4096},
            {"strategy": "sentences"},
            {"streams": 0},
        ],
    )
    def test_invalid_values(self, overrides):
        """Test out-of-range options are rejected."""
        values = {"dump_file": "enwiki.xml", "dump_date": "20240101", **overrides}
        with pytest.raises(ValidationError):
            IngestionSettings(**values)

    def test_environment_variables(self, monkeypatch):
        """Test WIKI_INGEST_* variables are read."""
        monkeypatch.setenv("WIKI_INGEST_BATCH_SIZE", "256")
        monkeypatch.setenv("WIKI_INGEST_STRATEGY", "chunked")
        settings = IngestionSettings(dump_file="enwiki.xml", dump_date="20240101")
        assert settings.batch_size == 256
        assert settings.collection == "wiki-chunked-20240101"


class TestCli:
    """Test argument parsing."""

    def test_only_given_options_are_passed(self):
        """Test unspecified options do not override settings defaults."""
        args = build_parser().parse_args(["--dump-file", "d.xml", "--dump-date", "20240101"])
        assert vars(args) == {"dump_file": "d.xml", "dump_date": "20240101"}

    def test_flags(self):
        """Test boolean flags map onto settings fields."""
        args = build_parser().parse_args(
            [
                "--dump-file", "d.xml", "--dump-date", "20240101",
                "--include-redirects", "--no-progress", "--clear-checkpoint",
            ]
        )
        settings = IngestionSettings(**vars(args))
        assert settings.skip_redirects is False
        assert settings.show_progress is False
        assert settings.clear_checkpoint is True

    def test_invalid_options_exit_1(self, capsys):
        """Test validation errors exit with code 1."""
        with pytest.raises(SystemExit) as exc_info:
            main(["--dump-file", "d.xml", "--dump-date", "20240101", "--streams", "2"])
        assert exc_info.value.code == 1
        assert "index-file" in capsys.readouterr().err

    def test_exit_code_from_run(self):
        """Test main exits with the pipeline's exit code."""
        with patch("wiki_ingest.__main__.run_ingestion", return_value=130) as run:
            with pytest.raises(SystemExit) as exc_info:
                main(["--dump-file", "d.xml", "--dump-date", "20240101", "--batch-size", "5"])
        assert exc_info.value.code == 130
        assert run.call_args.args[0].batch_size == 5

    def test_show_checkpoint(self, tmp_path, capsys):
        """Test --show-checkpoint prints the saved progress and exits 0."""
        path = tmp_path / "cp.json"
        checkpoint = create_initial_checkpoint(
            CheckpointParams(
                strategy="paragraph",
                dump_file="d.xml",
                dump_date="20240101",
                embedding_model="all-MiniLM-L12-v2",
                collection_name="wiki-paragraph-20240101",
            )
        )
        checkpoint.last_article_id = "42"
        checkpoint.articles_processed = 25
        checkpoint.total_articles = 100
        save_checkpoint(checkpoint, path)

        with patch("wiki_ingest.__main__.run_ingestion") as run:
            with pytest.raises(SystemExit) as exc_info:
                main(
                    [
                        "--dump-file", "d.xml", "--dump-date", "20240101",
                        "--checkpoint-file", str(path), "--show-checkpoint",
                    ]
                )
        assert exc_info.value.code == 0
        run.assert_not_called()
        shown = json.loads(capsys.readouterr().out)
        assert shown["lastArticleId"] == "42"
        assert shown["progressPercent"] == 25.0

    def test_show_missing_checkpoint(self, tmp_path, capsys):
        """Test --show-checkpoint exits 1 when there is nothing saved."""
        with pytest.raises(SystemExit) as exc_info:
            main(
                [
                    "--dump-file", "d.xml", "--dump-date", "20240101",
                    "--checkpoint-file", str(tmp_path / "none.json"), "--show-checkpoint",
                ]
            )
        assert exc_info.value.code == 1
        assert "No checkpoint" in capsys.readouterr().err
