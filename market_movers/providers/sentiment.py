"""Headline sentiment: keyword rules by default, FinBERT optionally.

Both providers emit the same vocabulary so the news pipeline can annotate
items without caring which one is configured:

    bullish  →  score in (0.0, 1.0]
    neutral  →  0.0
    bearish  →  score in [-1.0, 0.0)

The FinBERT model is loaded lazily from ``transformers`` (``finbert`` extra);
importing this module never pulls it in.
"""

import re
from dataclasses import dataclass
from typing import List

from market_movers.core.logger import logger
from market_movers.providers.base import SentimentProvider

_MODEL_NAME = "ProsusAI/finbert"

BULLISH = "bullish"
BEARISH = "bearish"
NEUTRAL = "neutral"

# FinBERT raw label → canonical label
_LABEL_MAP = {
    "positive": BULLISH,
    "negative": BEARISH,
    "neutral": NEUTRAL,
}

BULLISH_PATTERNS: List[re.Pattern] = [re.compile(p, re.I) for p in (
    r"\bapproved?\b", r"\bbeats?\b", r"record (high|revenue|sales|earnings)",
    r"\bgrowth\b", r"\bsurge[sd]?\b", r"\brally\b", r"\bjump(s|ed)?\b",
    r"\bsoar(s|ed)?\b", r"\bclimb(s|ed)?\b", r"\bbreakthrough\b",
    r"\bupgrade[sd]?\b", r"\boutperform", r"\bwins?\b", r"\bsuccess(ful)?\b",
    r"strong (quarter|results?|revenue|sales)", r"\bgain(s|ed)?\b",
    r"\bexceed(s|ed)?\b", r"partnership", r"positive (results?|data|trial)",
    r"\braise[sd]? guidance\b", r"(raises?|boosts?|hikes?|increases?) (price )?target",
    r"\boversubscribed\b", r"\bupsized?\b", r"rais(es?|ed|ing) \$\d",
    r"(completes?|closes?).{0,40}(offering|raise|financing)",
)]

BEARISH_PATTERNS: List[re.Pattern] = [re.compile(p, re.I) for p in (
    r"\brecall(s|ed)?\b", r"\brejected?\b", r"fails? (to|trial|study|endpoint)",
    r"\bmisse[sd]\b|\bmiss\b", r"\bdecline[sd]?\b", r"\blawsuit\b", r"\bsued?\b",
    r"\binvestigation\b", r"\bdowngrade[sd]?\b", r"\bwarning\b",
    r"\bplunges?\b", r"\bcrash\b", r"\bdrops?\b", r"\bfalls?\b",
    r"\bloss(es)?\b", r"\bsanction(s|ed)?\b", r"\bban\b", r"\bsuspend(ed)?\b",
    r"\bshortfall\b", r"weaker? (than expected|results?|revenue)",
    r"\bcut[s]? guidance\b", r"\blowers? (guidance|outlook)\b",
    r"\bdilutive\b", r"dilutes? (shareholders?|equity)",
)]


@dataclass
class SentimentResult:
    """Output of a single sentiment call.

    Attributes:
        label: ``"bullish"``, ``"neutral"`` or ``"bearish"``.
        score: Continuous score in ``[-1.0, 1.0]``.
        raw_label: Provider-native label (model label, or ``"keywords"``).
        raw_score: Provider-native confidence.
    """
    label: str
    score: float
    raw_label: str
    raw_score: float


class KeywordSentimentProvider(SentimentProvider):
    """Counts bullish vs bearish phrase matches; the majority wins.

    Score is ``(bull - bear) / (bull + bear)``, so a headline matching only
    bullish phrases scores ``1.0`` and a tie scores ``0.0``.
    """

    def analyze(self, text: str) -> SentimentResult:
        text = (text or "").strip()
        bull = sum(1 for p in BULLISH_PATTERNS if p.search(text))
        bear = sum(1 for p in BEARISH_PATTERNS if p.search(text))

        if bull > bear:
            label = BULLISH
        elif bear > bull:
            label = BEARISH
        else:
            label = NEUTRAL

        total = bull + bear
        score = round((bull - bear) / total, 4) if total else 0.0
        return SentimentResult(label=label, score=score, raw_label="keywords", raw_score=float(total))


class FinBERTProvider(SentimentProvider):
    """Local CPU financial sentiment using ``ProsusAI/finbert``.

    The underlying HuggingFace pipeline is loaded lazily on the first call to
    :meth:`analyze` so that importing this module has zero cost.

    Args:
        model_name: HuggingFace model identifier (default ``ProsusAI/finbert``).
    """

    def __init__(self, model_name: str = _MODEL_NAME) -> None:
        self.model_name = model_name
        self._pipeline = None  # lazy-loaded

    # ── public API ──────────────────────────────────────────────────────────

    def analyze(self, text: str) -> SentimentResult:
        text = (text or "").strip()
        if not text:
            return SentimentResult(label=NEUTRAL, score=0.0, raw_label="neutral", raw_score=0.0)

        pipe = self._get_pipeline()
        try:
            raw = pipe(text, truncation=True, max_length=512)
            # Newer transformers releases may wrap the result one level deeper.
            result = raw[0]
            if isinstance(result, list):
                result = result[0]
        except Exception as exc:
            logger.error(f"FinBERTProvider: inference failed for {text[:60]!r}: {exc}")
            return SentimentResult(label=NEUTRAL, score=0.0, raw_label="error", raw_score=0.0)

        raw_label: str = result["label"].lower()
        raw_score: float = float(result["score"])
        label = _LABEL_MAP.get(raw_label, NEUTRAL)
        score = _normalize(raw_label, raw_score)

        logger.debug(f"FinBERTProvider: [{label} / {score:+.3f}] — {text[:60]!r}")
        return SentimentResult(label=label, score=score, raw_label=raw_label, raw_score=raw_score)

    # ── internal ─────────────────────────────────────────────────────────────

    def _get_pipeline(self):
        """Lazy-load the HuggingFace pipeline on first call."""
        if self._pipeline is None:
            from transformers import pipeline as hf_pipeline
            logger.info(f"FinBERTProvider: loading model '{self.model_name}' on CPU")
            self._pipeline = hf_pipeline(
                task="text-classification",
                model=self.model_name,
                device=-1,
            )
        return self._pipeline


def _normalize(raw_label: str, raw_score: float) -> float:
    """Map softmax confidence onto a signed score in [-1.0, 1.0]."""
    if raw_label == "positive":
        return round(raw_score, 4)
    if raw_label == "negative":
        return round(-raw_score, 4)
    return 0.0


def build_sentiment_provider(kind: str = "keyword") -> SentimentProvider:
    """Return the provider named in ``news.sentiment`` (``keyword`` or ``finbert``)."""
    if (kind or "keyword").lower() == "finbert":
        return FinBERTProvider()
    return KeywordSentimentProvider()
