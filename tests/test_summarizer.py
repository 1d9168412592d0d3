"""Tests for response parsing, diff chunking and the Anthropic provider."""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import anthropic
import httpx
import pytest

from achievo_cli.config import Settings
from achievo_cli.errors import SummarizationError
from achievo_cli.scoring import extract_diff_features
from achievo_cli.summarizer import (
    AnthropicSummarizer,
    SummaryContext,
    build_summarizer,
    parse_summary_response,
    render_local_summary,
    split_diff,
)


def _message(text, input_tokens=10, output_tokens=5):
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens),
    )


def _client(*replies):
    create = AsyncMock(side_effect=list(replies))
    return SimpleNamespace(messages=SimpleNamespace(create=create))


class TestParseSummaryResponse:
    def test_structured(self):
        parsed = parse_summary_response('{"score_ai": 72, "markdown": "## Work"}')
        assert (parsed.ai_score, parsed.markdown, parsed.structured) == (72, "## Work", True)

    def test_fenced_json(self):
        parsed = parse_summary_response('```json\n{"score_ai": 55.6, "summary": "text"}\n```')
        assert (parsed.ai_score, parsed.markdown) == (56, "text")

    def test_score_is_clamped(self):
        assert parse_summary_response('{"score_ai": 250, "markdown": "x"}').ai_score == 100
        assert parse_summary_response('{"score_ai": "n/a", "markdown": "x"}').ai_score == 0

    @pytest.mark.parametrize("text", ["Just prose.", "[1, 2]", "", None])
    def test_plain_text_fallback(self, text):
        parsed = parse_summary_response(text)
        assert parsed.ai_score == 0
        assert parsed.markdown == (text or "").strip()
        assert parsed.structured is False


class TestSplitDiff:
    def test_small_diff_is_one_chunk(self, sample_diff):
        assert split_diff(sample_diff, 100000) == [sample_diff]
        assert split_diff("", 100) == []

    def test_splits_on_file_boundaries(self, sample_diff):
        chunks = split_diff(sample_diff, 200)
        assert len(chunks) > 1
        assert "".join(chunks) == sample_diff
        assert all(c.startswith("diff --git") for c in chunks)

    def test_oversized_file_is_cut(self):
        diff = "diff --git a/x b/x\n" + "".join(f"+line {i}\n" for i in range(100))
        chunks = split_diff(diff, 120)
        assert all(len(c) <= 120 for c in chunks)
        assert len(chunks) > 1


class TestLocalSummary:
    def test_renders_metrics(self, sample_diff):
        ctx = SummaryContext(
            insertions=12, deletions=3, prev_base_score=120, local_score=44,
            features=extract_diff_features(sample_diff),
        )
        md = render_local_summary(ctx)
        assert "Lines added: **12**" in md
        assert "Local score: **44**" in md
        assert "py (3)" in md
        assert "Dependency manifests changed" in md
        assert "2 functions, 1 classes, 3 exports" in md


class TestAnthropicSummarizer:
    def test_requires_key(self):
        with pytest.raises(SummarizationError):
            AnthropicSummarizer(api_key="", model="m")

    @pytest.mark.asyncio
    async def test_single_shot(self, sample_diff):
        client = _client(_message('{"score_ai": 70, "markdown": "ok"}'))
        s = AnthropicSummarizer(api_key="k", model="claude-test", client=client)

        reply = await s.summarize(sample_diff, SummaryContext(insertions=1))
        assert reply.text == '{"score_ai": 70, "markdown": "ok"}'
        assert (reply.model, reply.provider, reply.tokens, reply.chunks_count) == ("claude-test", "anthropic", 15, 1)
        kwargs = client.messages.create.await_args.kwargs
        assert kwargs["model"] == "claude-test"
        assert "Insertions: 1" in kwargs["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_chunked(self, sample_diff):
        chunks = split_diff(sample_diff, 200)
        replies = [_message(f"notes {i}") for i in range(len(chunks))] + [_message('{"score_ai": 60, "markdown": "merged"}')]
        client = _client(*replies)
        s = AnthropicSummarizer(api_key="k", model="m", max_chunk_chars=200, client=client)
        seen = []

        reply = await s.summarize_chunked(sample_diff, SummaryContext(), lambda done, total: seen.append((done, total)))

        total = len(chunks) + 1
        assert client.messages.create.await_count == total
        assert reply.chunks_count == len(chunks)
        assert reply.tokens == 15 * total
        assert seen[-1] == (total, total)
        assert parse_summary_response(reply.text).markdown == "merged"
        final_prompt = client.messages.create.await_args.kwargs["messages"][0]["content"]
        assert "notes 0" in final_prompt

    @pytest.mark.asyncio
    async def test_api_error_is_wrapped(self):
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        client = _client(anthropic.APIConnectionError(request=request))
        s = AnthropicSummarizer(api_key="k", model="m", client=client)
        with pytest.raises(SummarizationError):
            await s.summarize("diff --git a/x b/x\n+1\n", SummaryContext())


class TestBuildSummarizer:
    def test_offline_or_missing_key(self, tmp_path):
        assert build_summarizer(Settings(data_dir=tmp_path)) is None
        assert build_summarizer(Settings(data_dir=tmp_path, ai_api_key="k", offline_mode=True)) is None

    def test_configured(self, tmp_path):
        s = build_summarizer(Settings(data_dir=tmp_path, ai_api_key="k", ai_model="m", ai_max_chunk_chars=5000))
        assert isinstance(s, AnthropicSummarizer)
        assert (s.model, s.max_chunk_chars) == ("m", 5000)
