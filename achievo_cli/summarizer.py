"""
Diff Summarization
──────────────────
Sends the day's unified diff to Claude and expects JSON back:

    {"score_ai": 0..100, "markdown": "..."}

Large diffs are split on file boundaries into chunks; each chunk is
condensed into notes and a final call merges the notes into the reply.
Anything that isn't that JSON is kept as plain markdown with score 0.
When no provider is configured (or it fails) the caller renders a local
summary from the metrics instead.
"""

import json
import re
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

import anthropic

from achievo_cli.errors import SummarizationError
from achievo_cli.log import get_logger
from achievo_cli.scoring.features import DiffFeatureSummary
from achievo_cli.scoring.util import clamp

logger = get_logger("ai")

ProgressFn = Callable[[int, int], None]

_SYSTEM_PROMPT = (
    "You are a senior code reviewer. You read a developer's changes for one day and "
    "judge how much real progress they represent."
)
_FINAL_INSTRUCTIONS = (
    "Reply with a single JSON object and nothing else: "
    '{"score_ai": <integer 0-100, how substantial and valuable the work is>, '
    '"markdown": "<a concise markdown summary: what changed, why it matters, risks>"}'
)
_CHUNK_INSTRUCTIONS = (
    "Summarize this part of the diff in at most 8 terse bullet points. "
    "Mention features, fixes, tests and risky changes. Plain text only."
)
_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.S)


@dataclass
class SummaryContext:
    insertions: int = 0
    deletions: int = 0
    prev_base_score: int = 0
    local_score: int = 0
    features: Optional[DiffFeatureSummary] = None

    def describe(self) -> str:
        lines = [
            f"Insertions: {self.insertions}, deletions: {self.deletions}",
            f"Yesterday's base score: {self.prev_base_score}",
            f"Local score (0-100): {self.local_score}",
        ]
        if self.features is not None:
            lines.append(f"Features: {self.features.summary_line()}")
        return "\n".join(lines)


@dataclass
class SummaryReply:
    text: str
    model: Optional[str] = None
    provider: Optional[str] = None
    tokens: Optional[int] = None
    duration_ms: Optional[int] = None
    chunks_count: Optional[int] = None


@dataclass
class ParsedSummary:
    ai_score: int
    markdown: str
    structured: bool = field(default=False)


def parse_summary_response(text: Optional[str]) -> ParsedSummary:
    """Read ``{"score_ai", "markdown"}``; fall back to the whole text as markdown."""
    raw = (text or "").strip()
    body = raw
    m = _FENCE.match(raw)
    if m:
        body = m.group(1)
    try:
        obj = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        return ParsedSummary(ai_score=0, markdown=raw)
    if not isinstance(obj, dict):
        return ParsedSummary(ai_score=0, markdown=raw)

    try:
        score = int(round(float(obj.get("score_ai", obj.get("score", 0)) or 0)))
    except (TypeError, ValueError):
        score = 0
    md = obj.get("markdown") or obj.get("summary") or obj.get("text")
    if not isinstance(md, str) or not md.strip():
        md = raw
    return ParsedSummary(ai_score=clamp(score, 0, 100), markdown=md, structured=True)


def split_diff(diff: str, max_chars: int) -> List[str]:
    """Split on ``diff --git`` boundaries into chunks of at most ``max_chars``."""
    if not diff:
        return []
    sections = re.split(r"(?m)^(?=diff --git )", diff)
    chunks: List[str] = []
    current = ""
    for section in sections:
        if not section:
            continue
        while len(section) > max_chars:
            cut = section.rfind("\n", 0, max_chars)
            cut = cut if cut > 0 else max_chars
            if current:
                chunks.append(current)
                current = ""
            chunks.append(section[:cut])
            section = section[cut:].lstrip("\n")
        if current and len(current) + len(section) > max_chars:
            chunks.append(current)
            current = ""
        current += section
    if current:
        chunks.append(current)
    return chunks


def render_local_summary(ctx: SummaryContext) -> str:
    """Markdown built only from local metrics, used when no provider reply is available."""
    lines = [
        "## Today's changes (local summary)",
        "",
        f"- Lines added: **{ctx.insertions}**, removed: **{ctx.deletions}**",
        f"- Local score: **{ctx.local_score}** / 100",
        f"- Yesterday's base score: {ctx.prev_base_score}",
    ]
    f = ctx.features
    if f is not None:
        langs = ", ".join(f"{ext} ({n})" for ext, n in sorted(f.languages.items())) or "-"
        lines += [
            f"- Files touched: {f.files_total} (code {f.code_files}, tests {f.test_files}, "
            f"docs {f.doc_files}, config {f.config_files})",
            f"- Hunks: {f.hunks}, renames: {f.rename_or_move}",
            f"- Languages: {langs}",
        ]
        if f.symbols is not None:
            lines.append(
                f"- Added symbols: {f.symbols.functions} functions, "
                f"{f.symbols.classes} classes, {f.symbols.exports} exports"
            )
        if f.dependency_changes:
            lines.append("- Dependency manifests changed")
        if f.has_security_sensitive:
            lines.append("- Security-sensitive paths touched")
    return "\n".join(lines)


class AnthropicSummarizer:
    provider = "anthropic"

    def __init__(self, api_key: str, model: str, max_chunk_chars: int = 12000, client=None, max_tokens: int = 1500):
        if not api_key and client is None:
            raise SummarizationError("Missing AI API key (set ACHIEVO_AI_API_KEY or ANTHROPIC_API_KEY)")
        self.model = model
        self.max_chunk_chars = max_chunk_chars
        self.max_tokens = max_tokens
        self.client = client or anthropic.AsyncAnthropic(api_key=api_key)

    async def _complete(self, prompt: str) -> Tuple[str, int]:
        try:
            resp = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=_SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as e:
            raise SummarizationError(f"Summarization request failed: {e}") from e
        text = "".join(getattr(block, "text", "") for block in resp.content).strip()
        usage = getattr(resp, "usage", None)
        tokens = (usage.input_tokens + usage.output_tokens) if usage else 0
        return text, tokens

    async def summarize(self, diff: str, ctx: SummaryContext) -> SummaryReply:
        started = time.monotonic()
        excerpt = diff[: self.max_chunk_chars * 2]
        prompt = f"{ctx.describe()}\n\nUnified diff:\n{excerpt}\n\n{_FINAL_INSTRUCTIONS}"
        text, tokens = await self._complete(prompt)
        return SummaryReply(
            text=text,
            model=self.model,
            provider=self.provider,
            tokens=tokens,
            duration_ms=int((time.monotonic() - started) * 1000),
            chunks_count=1,
        )

    async def summarize_chunked(self, diff: str, ctx: SummaryContext, on_progress: Optional[ProgressFn] = None) -> SummaryReply:
        chunks = split_diff(diff, self.max_chunk_chars)
        if len(chunks) <= 1:
            reply = await self.summarize(diff, ctx)
            if on_progress:
                on_progress(1, 1)
            return reply

        started = time.monotonic()
        total = len(chunks) + 1
        notes, tokens = [], 0
        for i, chunk in enumerate(chunks, start=1):
            text, used = await self._complete(f"{_CHUNK_INSTRUCTIONS}\n\nDiff part {i}/{len(chunks)}:\n{chunk}")
            notes.append(f"Part {i}:\n{text}")
            tokens += used
            logger.debug("chunk %d/%d summarized (%d tokens)", i, len(chunks), used)
            if on_progress:
                on_progress(i, total)

        merged = "\n\n".join(notes)
        text, used = await self._complete(f"{ctx.describe()}\n\nNotes on each part of the diff:\n{merged}\n\n{_FINAL_INSTRUCTIONS}")
        if on_progress:
            on_progress(total, total)
        return SummaryReply(
            text=text,
            model=self.model,
            provider=self.provider,
            tokens=tokens + used,
            duration_ms=int((time.monotonic() - started) * 1000),
            chunks_count=len(chunks),
        )

    async def summarize_text(self, prompt: str) -> SummaryReply:
        """Free-form request used for week/month summaries."""
        started = time.monotonic()
        text, tokens = await self._complete(f"{prompt}\n\n{_FINAL_INSTRUCTIONS}")
        return SummaryReply(
            text=text,
            model=self.model,
            provider=self.provider,
            tokens=tokens,
            duration_ms=int((time.monotonic() - started) * 1000),
        )


def build_summarizer(settings) -> Optional[AnthropicSummarizer]:
    """The configured provider, or None when offline or no API key is set."""
    if settings.offline_mode or not settings.ai_api_key:
        return None
    return AnthropicSummarizer(settings.ai_api_key, settings.ai_model, settings.ai_max_chunk_chars)
