import json

import pytest

from sep_rag import cli
from sep_rag.models import HybridSearchResult


class _FakeEngine:
    def __init__(self):
        self.calls = []

    def search(self, query, top_k=10):
        self.calls.append((query, top_k))
        return [
            HybridSearchResult(
                chunk_id="logic/1/chunk-0",
                section_id="logic/1",
                chunk_index=0,
                chunk_text="retrieval",
                section_number="1",
                article_id="logic",
                article_title="Logic",
                rrf_score=0.03,
                rerank_score=0.9,
                generation_text="generation",
            )
        ]


def test_enqueue_sources_are_mutually_exclusive():
    parser = cli.build_parser()

    args = parser.parse_args(["enqueue", "--rss", "--days", "7"])
    assert args.rss and args.days == 7

    with pytest.raises(SystemExit):
        parser.parse_args(["enqueue", "--all", "--rss"])


def test_reset_incomplete_only_accepts_pending_or_failed():
    parser = cli.build_parser()

    assert parser.parse_args(["reset-incomplete"]).status == "pending"
    with pytest.raises(SystemExit):
        parser.parse_args(["reset-incomplete", "--status", "completed"])


def test_search_prints_results_as_json(monkeypatch, capsys):
    engine = _FakeEngine()
    monkeypatch.setattr(cli, "SepRagConfig", lambda: object())
    monkeypatch.setattr(cli, "_build_search_engine", lambda config: engine)

    cli.main(["search", "what is logic", "--top-k", "3"])

    payload = json.loads(capsys.readouterr().out)
    assert engine.calls == [("what is logic", 3)]
    assert payload[0]["chunk_id"] == "logic/1/chunk-0"
    assert payload[0]["generation_text"] == "generation"


def test_enqueue_without_source_exits(monkeypatch):
    monkeypatch.setattr(cli, "SepRagConfig", lambda: object())
    monkeypatch.setattr(cli.IngestionPipeline, "from_config", classmethod(lambda cls, config: object()))

    with pytest.raises(SystemExit):
        cli.main(["enqueue"])
