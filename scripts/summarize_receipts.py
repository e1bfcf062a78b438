#!/usr/bin/env python3
"""Print the consolidated spending summary for a folder of invoice PDFs.

Serves the cached summary when it still matches the folder, otherwise
recomputes it (or, for a stale cache, only when --recompute is given).

Usage:
    python scripts/summarize_receipts.py --data-dir data
    python scripts/summarize_receipts.py --recompute --provider disabled
"""

import argparse
import logging
from pathlib import Path

from services.receipts.service import AggregateView, create_receipt_service
from services.shared.config import Settings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def format_summary(view: AggregateView) -> list[str]:
    """Render an aggregate view as report lines.

    Args:
        view: Aggregate view to render

    Returns:
        Lines of the report, without trailing newlines
    """
    result = view.aggregate
    lines = ["=" * 80, "RECEIPTS SUMMARY", "=" * 80]

    cached_at = view.cached_at.isoformat() if view.cached_at else "never"
    lines.append(f"Documents: {len(result.document_ids)}   Cached at: {cached_at}")
    if view.stale:
        lines.append(f"STALE: {len(view.added)} added, {len(view.removed)} removed")
        lines.extend(f"  + {document_id}" for document_id in view.added)
        lines.extend(f"  - {document_id}" for document_id in view.removed)
    if view.warning:
        lines.append(f"WARNING: {view.warning}")

    lines.append("")
    lines.append(f"{'Document':<40} {'Invoice':<16} {'Total':>12}")
    lines.append("-" * 70)
    for document in result.per_document:
        total = document.record.resolved_total()
        shown_total = f"{total:,.2f}" if total is not None else "-"
        invoice = document.record.invoice_number or (document.error or "-")
        lines.append(f"{document.source_id[:40]:<40} {invoice[:16]:<16} {shown_total:>12}")

    lines.append("")
    lines.append("Line items:")
    for item in result.consolidated_line_items:
        label = item.label or "-"
        lines.append(f"  {item.description[:44]:<44} {label:<12} {item.amount:>12,.2f}")

    lines.append("")
    lines.append("Categories:")
    for category in result.category_breakdown:
        lines.append(f"  {category.name:<20} {category.total:>12,.2f} {category.percentage:>7}%")

    lines.append("")
    lines.append(f"Total tax:   {result.total_tax:>12,.2f}")
    lines.append(f"Grand total: {result.grand_total:>12,.2f}")
    lines.append("=" * 80)
    return lines


def main(argv: list[str] | None = None) -> None:
    """Build the summary from command-line options and print it."""
    parser = argparse.ArgumentParser(description="Summarize a folder of invoice PDFs")
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Folder of invoice PDFs (default: APP_DOCUMENTS_DIR)",
    )
    parser.add_argument(
        "--cache",
        type=Path,
        default=None,
        help="Cache file path (default: APP_CACHE_PATH)",
    )
    parser.add_argument(
        "--provider",
        choices=["ollama", "openai", "disabled"],
        default=None,
        help="Classification provider (default: APP_CLASSIFICATION_PROVIDER)",
    )
    parser.add_argument(
        "--recompute",
        action="store_true",
        help="Recompute when the cached summary is stale",
    )
    args = parser.parse_args(argv)

    overrides = {
        "documents_dir": args.data_dir,
        "cache_path": args.cache,
        "classification_provider": args.provider,
    }
    settings = Settings(**{key: value for key, value in overrides.items() if value is not None})

    service = create_receipt_service(settings)
    try:
        view = service.get_aggregate(recompute=args.recompute)
    finally:
        service.close()

    for line in format_summary(view):
        print(line)


if __name__ == "__main__":
    main()
