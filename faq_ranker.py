# faq_ranker.py
# Este módulo escolhe as entradas de FAQ mais relevantes para uma mensagem recebida
# e as formata como bloco de contexto para o LLM. É puramente lexical: normalização,
# tokenização, divisão de variações da pergunta, pontuação por múltiplos sinais e ranking.

from __future__ import annotations

import os
import re
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Hashable, Iterable, List, Optional, Sequence, Tuple

import yaml  # requer PyYAML

from text_normalizer import DEFAULT_LEXICON, Lexicon, normalize_text, tokenize_for_match


# ==== Modelos ====
@dataclass(frozen=True)
class FaqEntry:
    """Visão somente-leitura de um FAQ armazenado."""

    question: str
    answer: str
    is_active: bool = True
    entry_id: Optional[Hashable] = None
    updated_at: Optional[str] = None


@dataclass(frozen=True)
class RankedFaq:
    question: str
    answer: str
    matched_variant: str
    score: int

    def as_dict(self) -> Dict[str, Any]:
        return {
            "question": self.question,
            "answer": self.answer,
            "matched_variant": self.matched_variant,
            "score": self.score,
        }


# ==== Configuração do Ranker ====
@dataclass(frozen=True)
class RankerConfig:
    """Constantes de pontuação. Os valores padrão reproduzem o comportamento em produção."""

    lexicon: Lexicon = field(default=DEFAULT_LEXICON)
    exact_bonus: int = 6
    containment_bonus: int = 4
    containment_min_length: int = 2
    coverage_bonus: int = 2
    question_weight: int = 3
    top_k: int = 5


DEFAULT_CONFIG = RankerConfig()

RANKER_CONFIG_PATH = os.getenv("FAQ_RANKER_YAML", "config/faq_ranker.yml")

_INT_KEYS = (
    "exact_bonus",
    "containment_bonus",
    "containment_min_length",
    "coverage_bonus",
    "question_weight",
    "top_k",
)


def _coerce_int(value: Any, default: int, *, minimum: int = 0) -> int:
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    return parsed if parsed >= minimum else default


def _coerce_words(values: Any, default: Iterable[str]) -> frozenset:
    if not isinstance(values, (list, tuple, set)):
        return frozenset(default)
    words = {normalize_text(str(v)) for v in values}
    return frozenset(w for w in words if w)


def load_ranker_config(path: Optional[str] = None) -> RankerConfig:
    """
    Carrega as constantes do ranker de um arquivo YAML.
    Chaves ausentes ou inválidas mantêm o valor padrão; arquivo ausente devolve os defaults.
    """
    path = path or RANKER_CONFIG_PATH
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        print(f"[FAQ] Config do ranker não encontrada: {path} - usando defaults.", flush=True)
        return DEFAULT_CONFIG

    if not isinstance(data, dict):
        print(f"[FAQ] WARN: Config do ranker inválida em {path} - usando defaults.", flush=True)
        return DEFAULT_CONFIG

    overrides: Dict[str, Any] = {}
    for key in _INT_KEYS:
        if key in data:
            minimum = 1 if key == "top_k" else 0
            overrides[key] = _coerce_int(data[key], getattr(DEFAULT_CONFIG, key), minimum=minimum)

    lex_raw = data.get("lexicon") or {}
    if isinstance(lex_raw, dict) and lex_raw:
        base = DEFAULT_LEXICON
        overrides["lexicon"] = Lexicon(
            stop_words=_coerce_words(lex_raw.get("stop_words"), base.stop_words),
            short_allowed=_coerce_words(lex_raw.get("short_allowed"), base.short_allowed),
            min_token_length=_coerce_int(lex_raw.get("min_token_length"), base.min_token_length, minimum=1),
        )

    return replace(DEFAULT_CONFIG, **overrides)


# ==== Blocos básicos ====
_VARIANT_SPLIT = re.compile(r"\r?\n|[;,|]")


def split_faq_variants(question: Optional[str]) -> List[str]:
    """Divide o campo de pergunta nas suas variações (quebras de linha, ';', ',' ou '|')."""
    return [part.strip() for part in _VARIANT_SPLIT.split(question or "") if part.strip()]


def count_intersection(a: Sequence[str], b: Sequence[str]) -> int:
    """Conta quantos tokens de ``a`` (com repetição) aparecem no conjunto de ``b``."""
    if not a or not b:
        return 0
    b_set = set(b)
    return sum(1 for token in a if token in b_set)


@dataclass(frozen=True)
class _PreparedVariant:
    raw: str
    normalized: str
    tokens: Tuple[str, ...]


@dataclass(frozen=True)
class _PreparedFaq:
    variants: Tuple[_PreparedVariant, ...]
    answer_tokens: Tuple[str, ...]


def _prepare_variant(variant: str, lexicon: Lexicon) -> _PreparedVariant:
    normalized = normalize_text(variant)
    tokens = tuple(tokenize_for_match(normalized, lexicon)) if normalized else ()
    return _PreparedVariant(variant, normalized, tokens)


def _prepare_faq(entry: FaqEntry, lexicon: Lexicon) -> _PreparedFaq:
    # Uma pergunta sem delimitadores (ou só com eles) ainda participa como variação única.
    variants = split_faq_variants(entry.question) or [entry.question]
    return _PreparedFaq(
        variants=tuple(_prepare_variant(v, lexicon) for v in variants),
        answer_tokens=tuple(tokenize_for_match(entry.answer, lexicon)),
    )


def _score_prepared(
    normalized_input: str,
    input_tokens: Sequence[str],
    variant: _PreparedVariant,
    config: RankerConfig,
) -> int:
    normalized_variant = variant.normalized
    if not normalized_variant:
        return 0

    score = count_intersection(input_tokens, variant.tokens)

    if normalized_input == normalized_variant:
        score += config.exact_bonus

    if len(normalized_variant) >= config.containment_min_length and (
        normalized_variant in normalized_input or normalized_input in normalized_variant
    ):
        score += config.containment_bonus

    if variant.tokens and all(token in normalized_input for token in variant.tokens):
        score += config.coverage_bonus

    return score


def score_variant_match(
    normalized_input: str,
    input_tokens: Sequence[str],
    variant: str,
    config: Optional[RankerConfig] = None,
) -> int:
    """
    Pontua uma variação da pergunta contra a entrada já normalizada.

    Os sinais são somados: interseção de tokens, bônus de igualdade exata,
    bônus de contenção de substring e bônus de cobertura de todos os tokens.
    """
    cfg = config or DEFAULT_CONFIG
    return _score_prepared(normalized_input, input_tokens, _prepare_variant(variant, cfg.lexicon), cfg)


# ==== Cache de preparação ====
class FaqPreparationCache:
    """
    Memoiza variações normalizadas e tokens de cada FAQ por (id, updated_at).

    Apenas dados derivados do texto do FAQ ficam aqui; pontuações são sempre recalculadas.
    Entradas sem identidade não são memoizadas.
    """

    def __init__(self, max_entries: int = 2048):
        self.max_entries = max_entries
        self._lock = threading.Lock()
        self._items: Dict[Tuple[Hashable, str, Lexicon], _PreparedFaq] = {}

    def get(self, entry: FaqEntry, lexicon: Lexicon) -> _PreparedFaq:
        if entry.entry_id is None or entry.updated_at is None:
            return _prepare_faq(entry, lexicon)
        try:
            hash(entry.entry_id)
        except TypeError:
            return _prepare_faq(entry, lexicon)

        key = (entry.entry_id, str(entry.updated_at), lexicon)
        with self._lock:
            cached = self._items.get(key)
        if cached is not None:
            return cached

        prepared = _prepare_faq(entry, lexicon)
        with self._lock:
            if len(self._items) >= self.max_entries:
                self._items.clear()
            # Versões antigas do mesmo FAQ deixam de ser válidas.
            stale = [k for k in self._items if k[0] == entry.entry_id and k[1] != key[1]]
            for k in stale:
                del self._items[k]
            self._items[key] = prepared
        return prepared

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


# ==== Ranking ====
def rank_faqs(
    active_faqs: Sequence[FaqEntry],
    input_text: Optional[str],
    config: Optional[RankerConfig] = None,
    *,
    cache: Optional[FaqPreparationCache] = None,
) -> List[RankedFaq]:
    """
    Ranqueia os FAQs ativos para a mensagem recebida.

    Args:
        active_faqs: FAQs já filtrados como ativos pelo chamador.
        input_text: Texto bruto enviado pelo usuário.
        config: Constantes de pontuação (``DEFAULT_CONFIG`` se omitido).
        cache: Cache opcional de preparação por identidade do FAQ.

    Returns:
        Até ``config.top_k`` entradas com score > 0, em ordem decrescente de score.
        Empates mantêm a ordem original dos FAQs.
    """
    cfg = config or DEFAULT_CONFIG
    text = (input_text or "").strip()
    if not text or not active_faqs:
        return []

    normalized_input = normalize_text(text)
    input_tokens = tokenize_for_match(text, cfg.lexicon)

    ranked: List[RankedFaq] = []
    for entry in active_faqs:
        prepared = cache.get(entry, cfg.lexicon) if cache is not None else _prepare_faq(entry, cfg.lexicon)

        best_variant, best_score = prepared.variants[0].raw, None
        for variant in prepared.variants:
            score = _score_prepared(normalized_input, input_tokens, variant, cfg)
            if best_score is None or score > best_score:
                best_variant, best_score = variant.raw, score

        answer_hits = count_intersection(input_tokens, prepared.answer_tokens)
        final = (best_score or 0) * cfg.question_weight + answer_hits
        if final <= 0:
            continue
        ranked.append(RankedFaq(entry.question, entry.answer, best_variant, final))

    # sorted() é estável: empates preservam a ordem de varredura.
    ranked = sorted(ranked, key=lambda item: item.score, reverse=True)
    return ranked[: cfg.top_k]


def render_faq_context(ranked: Sequence[RankedFaq]) -> str:
    """Formata as entradas ranqueadas como blocos numerados separados por linha em branco."""
    return "\n\n".join(
        f"{index}. Pergunta: {item.question}\n"
        f"Variação relevante: {item.matched_variant}\n"
        f"Resposta: {item.answer}"
        for index, item in enumerate(ranked, start=1)
    )


def get_faq_context(
    active_faqs: Sequence[FaqEntry],
    input_text: Optional[str],
    config: Optional[RankerConfig] = None,
    *,
    cache: Optional[FaqPreparationCache] = None,
) -> str:
    """Ponto de entrada usado pelo fluxo de mensagens: devolve o bloco de contexto ou ``""``."""
    return render_faq_context(rank_faqs(active_faqs, input_text, config, cache=cache))


__all__ = [
    "DEFAULT_CONFIG",
    "FaqEntry",
    "FaqPreparationCache",
    "RankedFaq",
    "RankerConfig",
    "count_intersection",
    "get_faq_context",
    "load_ranker_config",
    "rank_faqs",
    "render_faq_context",
    "score_variant_match",
    "split_faq_variants",
]
