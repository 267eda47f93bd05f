#!/usr/bin/env python
"""
Lead deduplication from the command line.

Usage:
    # List duplicate groups (dry run)
    python scripts/dedupe_leads.py --list

    # Merge specific leads into a master
    python scripts/dedupe_leads.py --merge --master=123 --duplicate=456 --duplicate=789

    # Merge every high-confidence group into its oldest lead
    python scripts/dedupe_leads.py --merge-high --confirm

Environment:
    DATABASE_URL
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.saleshub.modules.crm.dedup import find_duplicates, merge_duplicates  # noqa: E402
from scripts._db_utils import script_session  # noqa: E402


def list_groups() -> None:
    with script_session() as s:
        groups = find_duplicates(s)
        if not groups:
            print("No duplicate leads found.")
            return
        print(f"Found {len(groups)} duplicate groups:\n")
        for i, g in enumerate(groups, 1):
            print(f"{i}. [{g.confidence}] {g.match_type}")
            for c in g.leads:
                print(f"   #{c.id} {c.full_name} <{c.email or '-'}> {c.phone or '-'} status={c.status}")


def merge(master_id: int, duplicate_ids: list[int]) -> None:
    with script_session() as s:
        merged = merge_duplicates(s, master_id, duplicate_ids, actor=None)
    print(f"Merged {merged} lead(s) into #{master_id}.")


def merge_high() -> None:
    total = 0
    with script_session() as s:
        for g in find_duplicates(s):
            if g.confidence != "high" or len(g.leads) < 2:
                continue
            ordered = sorted(g.leads, key=lambda c: (c.created_at, c.id))
            master, dups = ordered[0], [c.id for c in ordered[1:]]
            total += merge_duplicates(s, master.id, dups, actor=None)
            s.flush()
    print(f"Merged {total} lead(s).")


def main() -> None:
    parser = argparse.ArgumentParser(description="Find and merge duplicate leads")
    parser.add_argument("--list", action="store_true", help="List duplicate groups")
    parser.add_argument("--merge", action="store_true", help="Merge --duplicate ids into --master")
    parser.add_argument("--master", type=int)
    parser.add_argument("--duplicate", type=int, action="append", default=[])
    parser.add_argument("--merge-high", action="store_true", help="Merge all high-confidence groups")
    parser.add_argument("--confirm", action="store_true")
    args = parser.parse_args()

    if args.list:
        list_groups()
    elif args.merge:
        if not args.master or not args.duplicate:
            parser.error("--merge requires --master and at least one --duplicate")
        merge(args.master, args.duplicate)
    elif args.merge_high:
        if not args.confirm:
            parser.error("--merge-high rewrites data; pass --confirm")
        merge_high()
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
