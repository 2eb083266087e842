#!/usr/bin/env python3
"""CLI tool to evaluate registration cases or mine market-value hotspots.

Usage:
    python run_checks.py <cases.json>                          # Evaluate cases
    python run_checks.py <cases.json> --reference ref.json     # With rate cards / registry
    python run_checks.py <cases.json> --config rules.json      # With RulesConfig overrides
    python run_checks.py <cases.json> --json                   # Output raw JSON
    python run_checks.py <cases.json> --trace                  # Run with RLE_TRACE
    python run_checks.py --hotspots locations.json             # Mine MV hotspots
    python run_checks.py --hotspots locations.json --year 2024 # Fix the case-id year

Examples:
    python run_checks.py samples/cases.json --reference samples/reference.json
    python run_checks.py --hotspots samples/locations.json --json
"""

import argparse
import json
import os
import sys
from pathlib import Path

# Ensure the backend package is importable
sys.path.insert(0, str(Path(__file__).resolve().parent))


def _load_json(path: str):
    p = Path(path)
    if not p.exists():
        print(f"File '{path}' not found.")
        sys.exit(1)
    return json.loads(p.read_text(encoding="utf-8"))


def _setup(trace: bool):
    """Apply --trace before any pipeline module reads the config."""
    if trace:
        os.environ["RLE_TRACE"] = "1"
        import importlib
        import revenue_leakage.config
        importlib.reload(revenue_leakage.config)

    import logging
    if trace:
        logging.basicConfig(level=logging.DEBUG, format="%(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)


def _load_config(config_path):
    from revenue_leakage.config import ConfigError, RulesConfig, get_rules_config
    try:
        return RulesConfig.load(config_path) if config_path else get_rules_config()
    except ConfigError as e:
        print(f"Invalid config: {e}")
        sys.exit(2)


def run_cases(cases_path: str, reference_path, config_path, output_json: bool = False):
    """Evaluate every case in the file and print a risk table."""
    from revenue_leakage.pipeline.aggregator import summarise_offices
    from revenue_leakage.pipeline.batch import evaluate_batch
    from revenue_leakage.pipeline.models import Case
    from revenue_leakage.pipeline.reference import ReferenceData
    from revenue_leakage.pipeline.utils import format_inr

    config = _load_config(config_path)
    reference = ReferenceData.load(reference_path) if reference_path else ReferenceData()

    raw = _load_json(cases_path)
    if isinstance(raw, dict):
        raw = raw.get("cases", [raw])
    cases = [Case.from_dict(c) for c in raw]
    results = evaluate_batch(cases, reference, config)

    if output_json:
        output = {
            "results": [r.to_dict() for r in results],
            "office_risk_scores": summarise_offices(results, config),
        }
        print(json.dumps(output, indent=2, default=str, ensure_ascii=False))
        return

    print(f"\n{'═' * 78}")
    print(f"  Revenue Leakage Check Runner — {len(results)} case(s)")
    print(f"{'═' * 78}\n")
    print(f"  {'Document':<24} {'Score':>5}  {'Level':<7} {'Conf':>4}  {'Gap':>14}  Signals")
    print(f"  {'─' * 74}")
    for r in results:
        level_icon = {"High": "🔴", "Medium": "🟡", "Low": "🟢"}.get(r.risk_level.value, "⚪")
        signals = ", ".join(s.value for s in r.leakage_signals) or "—"
        print(f"  {r.document:<24} {r.risk_score:>5}  {level_icon} {r.risk_level.value:<5} "
              f"{r.confidence:>4}  {format_inr(r.gap_inr):>14}  {signals}")
        for hit in r.triggered_rules:
            print(f"      [{hit.rule_id}] {hit.severity.value:<6} {hit.explanation[:100]}")
        if r.rule_errors:
            print(f"      ✗ rule errors: {', '.join(r.rule_errors)}")
    print()

    high = sum(1 for r in results if r.risk_level.value == "High")
    total_impact = sum(r.impact_amount_inr for r in results)
    print(f"{'═' * 78}")
    print(f"  Summary: {high} high risk of {len(results)}, total impact {format_inr(total_impact)}")
    print(f"{'═' * 78}\n")


def run_hotspots(locations_path: str, config_path, output_json: bool = False, run_year=None):
    """Mine hotspots from location records (or raw transactions)."""
    from revenue_leakage.pipeline.hotspots import (
        LocationRecord, MVTransaction, build_location_records, mine_hotspots, summarise_hotspots,
    )
    from revenue_leakage.pipeline.utils import format_inr

    config = _load_config(config_path)
    raw = _load_json(locations_path)
    if isinstance(raw, list):
        raw = {"locations": raw}
    try:
        locations = [LocationRecord.from_dict(d) for d in raw.get("locations", [])]
    except (TypeError, ValueError) as e:
        print(f"Invalid location record: {e}")
        sys.exit(2)
    transactions = [MVTransaction.from_dict(d) for d in raw.get("transactions", [])]
    if transactions:
        locations.extend(build_location_records(transactions, config))

    try:
        hotspots = mine_hotspots(locations, config, run_year)
    except ValueError as e:
        print(f"Cannot mine hotspots: {e} (pass --year)")
        sys.exit(2)
    summary = summarise_hotspots(hotspots, locations)

    if output_json:
        print(json.dumps({"hotspots": [h.to_dict() for h in hotspots], "summary": summary},
                         indent=2, default=str, ensure_ascii=False))
        return

    print(f"\n{'═' * 78}")
    print(f"  MV Hotspot Miner — {len(locations)} location(s), {len(hotspots)} hotspot(s)")
    print(f"{'═' * 78}\n")
    for h in hotspots:
        loc = h.location
        print(f"  {h.case_id:<30} {h.severity.value:<8} DRR {loc.drr:.2f}  "
              f"txns {loc.transaction_count:>3}  loss {format_inr(loc.estimated_loss)}")
        print(f"      {loc.location_label} — rules {', '.join(h.rules_triggered)}")
    print()
    print(f"{'═' * 78}")
    print(f"  Summary: {summary['pct_in_hotspots']}% of transactions in hotspots, "
          f"total loss {format_inr(summary['total_loss'])}")
    print(f"{'═' * 78}\n")


def main():
    parser = argparse.ArgumentParser(
        description="Revenue Leakage CLI — evaluate cases or mine MV hotspots",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("cases", nargs="?", help="Cases JSON file (list or {'cases': [...]})")
    parser.add_argument("--reference", help="Reference data JSON (rate cards, prohibited land, exemption policy)")
    parser.add_argument("--config", help="RulesConfig overrides JSON")
    parser.add_argument("--hotspots", metavar="LOCATIONS", help="Mine hotspots from a locations JSON file")
    parser.add_argument("--year", type=int, help="Case-id year for --hotspots (default: latest transaction year)")
    parser.add_argument("--trace", action="store_true", help="Enable RLE_TRACE debug output")
    parser.add_argument("--json", action="store_true", help="Output raw JSON instead of pretty print")

    args = parser.parse_args()
    _setup(args.trace)

    if args.hotspots:
        run_hotspots(args.hotspots, args.config, output_json=args.json, run_year=args.year)
        return

    if not args.cases:
        parser.print_help()
        return

    run_cases(args.cases, args.reference, args.config, output_json=args.json)


if __name__ == "__main__":
    main()
