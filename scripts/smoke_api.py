#!/usr/bin/env python3
"""Smoke test hitting /healthz, /faq/context and /metrics."""

from __future__ import annotations

import sys
from dataclasses import dataclass

import requests

DEFAULT_BASE = "http://localhost:3000"


@dataclass
class SmokeResult:
    name: str
    ok: bool
    detail: str


def _http_post(url: str, payload: dict) -> requests.Response:
    resp = requests.post(url, json=payload, timeout=20)
    resp.raise_for_status()
    return resp


def _http_get(url: str) -> requests.Response:
    resp = requests.get(url, timeout=10)
    resp.raise_for_status()
    return resp


def check_health(base: str) -> SmokeResult:
    try:
        data = _http_get(f"{base}/healthz").json()
        if not data.get("faq_ok"):
            return SmokeResult("/healthz", False, "faq_ok=false")
        return SmokeResult("/healthz", True, "ok")
    except requests.RequestException as exc:  # pragma: no cover - smoke script
        return SmokeResult("/healthz", False, str(exc))


def check_faq_context(base: str) -> SmokeResult:
    try:
        data = _http_post(f"{base}/faq/context", {"text": "qual o horario de atendimento?"}).json()
        if "context" not in data or "ranked" not in data:
            return SmokeResult("/faq/context", False, "faltou 'context' ou 'ranked'")
        return SmokeResult("/faq/context", True, f"{len(data['ranked'])} FAQs")
    except requests.RequestException as exc:  # pragma: no cover
        return SmokeResult("/faq/context", False, str(exc))


def check_metrics(base: str) -> SmokeResult:
    try:
        counters = _http_get(f"{base}/metrics").json().get("counters", {})
        expected = {"webhook_received_total", "faq_context_requests_total"}
        missing = sorted(expected - counters.keys())
        if missing:
            return SmokeResult("/metrics", False, f"counters faltando: {', '.join(missing)}")
        return SmokeResult("/metrics", True, "ok")
    except requests.RequestException as exc:  # pragma: no cover
        return SmokeResult("/metrics", False, str(exc))


def main() -> int:
    base = sys.argv[1] if len(sys.argv) > 1 else DEFAULT_BASE
    results = [
        check_health(base),
        check_faq_context(base),
        check_metrics(base),
    ]

    failed = [r for r in results if not r.ok]
    for r in results:
        status = "OK" if r.ok else "FAIL"
        print(f"[SMOKE] {r.name:14s} {status} - {r.detail}")

    return 0 if not failed else 1


if __name__ == "__main__":
    sys.exit(main())
