#!/usr/bin/env python3
"""Report file moves that were interrupted and where their file currently is."""

from __future__ import annotations

import argparse
import json
import os
import sys
from datetime import datetime

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from mediavault.app import create_app  # noqa: E402
from mediavault.services.storage import FileMoveRepository, StorageError  # noqa: E402


def parse_args():
    p = argparse.ArgumentParser(description='List pending file moves and probe both of their paths')
    p.add_argument('--entity-id', type=str, default=None)
    p.add_argument('--path-type', type=str, default=None)
    p.add_argument('--report-jsonl', type=str, default=None)
    return p.parse_args()


def main():
    args = parse_args()
    app = create_app()
    storage = app.extensions['mediavault']['storage']

    stats = {
        'pending': 0,
        'at_old_location': 0,
        'at_new_location': 0,
        'at_both_locations': 0,
        'missing': 0,
        'errors': 0,
    }
    report_fp = open(args.report_jsonl, 'a', encoding='utf-8') if args.report_jsonl else None

    try:
        with app.app_context():
            for move in FileMoveRepository().list_pending():
                if args.entity_id and move.entity_id != args.entity_id:
                    continue
                if args.path_type and move.path_type != args.path_type:
                    continue
                stats['pending'] += 1

                try:
                    old_exists = storage.exists(move.old_path)
                    new_exists = storage.exists(move.new_path)
                except StorageError as exc:
                    stats['errors'] += 1
                    _report(report_fp, move, 'error', error=str(exc))
                    continue

                if old_exists and new_exists:
                    location = 'at_both_locations'
                elif old_exists:
                    location = 'at_old_location'
                elif new_exists:
                    location = 'at_new_location'
                else:
                    location = 'missing'
                stats[location] += 1
                _report(report_fp, move, location)
    finally:
        if report_fp:
            report_fp.close()

    print(json.dumps({'timestamp': datetime.utcnow().isoformat(), **stats}, ensure_ascii=False, indent=2))
    return 0 if stats['missing'] == 0 and stats['errors'] == 0 else 1


def _report(fp, move, action, error=None):
    if not fp:
        return
    row = {
        'ts': datetime.utcnow().isoformat(),
        **move.to_dict(),
        'action': action,
        'error': error,
    }
    fp.write(json.dumps(row, ensure_ascii=False) + '\n')
    fp.flush()


if __name__ == '__main__':
    raise SystemExit(main())
