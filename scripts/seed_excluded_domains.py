#!/usr/bin/env python3
"""Emit deterministic SQL that seeds the excluded-domains list."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from curated_corpus.core.domains import InvalidHostnameError, normalize_hostname


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def collect_domains(raw_domains: list[str]) -> tuple[list[str], list[str]]:
    """Normalized, de-duplicated, sorted hostnames plus the inputs that were rejected."""
    accepted: set[str] = set()
    rejected: list[str] = []
    for raw in raw_domains:
        try:
            accepted.add(normalize_hostname(raw))
        except InvalidHostnameError as exc:
            rejected.append(f"{raw.strip()}: {exc}")
    return sorted(accepted), rejected


def render_sql(*, domains: list[str], actor: str) -> str:
    actor_value = _quote_sql(actor)
    values = ",\n".join(f"  ({_quote_sql(domain)}, now(), {actor_value})" for domain in domains)
    return f"""-- Excluded domains seed SQL
-- Run against the curated corpus database; existing rows are left untouched.

insert into excluded_domains (domain_name, created_at, created_by)
values
{values}
on conflict (domain_name) do nothing;
"""


def _read_domain_file(path: Path) -> list[str]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [line for line in lines if line.strip() and not line.lstrip().startswith("#")]


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL to seed the excluded domains list.")
    parser.add_argument("domains", nargs="*", help="Hostnames to exclude (e.g. example.com)")
    parser.add_argument("--file", type=Path, help="File with one hostname per line; # starts a comment")
    parser.add_argument("--actor", default="system", help="Value stored in excluded_domains.created_by")
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Fail instead of skipping hostnames that cannot be normalized",
    )
    args = parser.parse_args()

    raw_domains = list(args.domains)
    if args.file is not None:
        raw_domains.extend(_read_domain_file(args.file))
    if not raw_domains:
        parser.error("at least one domain (or --file) is required")

    domains, rejected = collect_domains(raw_domains)
    for message in rejected:
        print(f"skipped {message}", file=sys.stderr)
    if rejected and args.strict:
        parser.exit(status=2, message="invalid hostnames supplied with --strict\n")
    if not domains:
        parser.exit(status=2, message="no valid hostnames to seed\n")

    print(render_sql(domains=domains, actor=args.actor))


if __name__ == "__main__":
    main()
