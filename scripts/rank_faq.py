#!/usr/bin/env python3
# scripts/rank_faq.py
# Mostra como uma mensagem seria ranqueada contra um arquivo de FAQs, sem subir a API.
import argparse
import os
import sys

# Adiciona o diretório raiz ao path para permitir importações de outros módulos
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from faq_ranker import load_ranker_config, rank_faqs, render_faq_context
from faq_store import FAQ_STORE_PATH, FaqStoreError, load_faq_file


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Ranqueia FAQs para uma mensagem.")
    parser.add_argument("text", help="Mensagem do usuário")
    parser.add_argument("--faqs", default=FAQ_STORE_PATH, help="Arquivo YAML/JSON de FAQs")
    parser.add_argument("--config", default=None, help="YAML com as constantes do ranker")
    parser.add_argument("--include-inactive", action="store_true", help="Considera FAQs inativos")
    args = parser.parse_args(argv)

    try:
        entries = load_faq_file(args.faqs)
    except FaqStoreError as e:
        print(f"[ERRO] {e}", file=sys.stderr)
        return 2

    if not args.include_inactive:
        entries = [e for e in entries if e.is_active]

    config = load_ranker_config(args.config)
    ranked = rank_faqs(entries, args.text, config)

    print(f"--- {len(ranked)} de {len(entries)} FAQs com score > 0 ---")
    for item in ranked:
        print(f"[{item.score:3d}] {item.matched_variant}")
    print("-" * 20)
    print(render_faq_context(ranked) or "(sem contexto de FAQ)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
