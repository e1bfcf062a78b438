"""Spend category labeling for line items.

The classification service decides the category of each line item from a
fixed vocabulary. Whatever goes wrong (service down, slow, or answering
nonsense) the item gets the default label, so labeling never blocks the
pipeline.
"""

import logging
from collections.abc import Sequence
from typing import Any

from services.classification.base import ClassificationProvider, classification_requests_total
from services.extraction.response_parser import parse_json_array
from services.extraction.schema import CATEGORY_LABELS, DEFAULT_CATEGORY, LineItem

logger = logging.getLogger(__name__)

_LABELS_BY_KEY = {label.lower(): label for label in CATEGORY_LABELS}


def normalize_label(value: Any) -> str:
    """Map a model answer onto the label vocabulary.

    Accepts a bare string or an object with a "label"/"category" key;
    matching is case-insensitive. Anything else is the default label.
    """
    if isinstance(value, dict):
        value = value.get("label", value.get("category"))
    if not isinstance(value, str):
        return DEFAULT_CATEGORY
    return _LABELS_BY_KEY.get(value.strip().lower(), DEFAULT_CATEGORY)


class CategoryLabeler:
    """Assign a category label to each line item via the classification service."""

    def __init__(self, classifier: ClassificationProvider | None = None) -> None:
        """Initialize labeler.

        Args:
            classifier: Classification service; None labels everything as default
        """
        self._classifier = classifier

    def label(self, items: Sequence[LineItem]) -> list[LineItem]:
        """Label line items.

        Args:
            items: Line items in document order

        Returns:
            Copies of the items, in the same order, with ``label`` set
        """
        if not items:
            return []

        labels = self._request_labels(items)
        labels += [DEFAULT_CATEGORY] * (len(items) - len(labels))
        return [item.model_copy(update={"label": label}) for item, label in zip(items, labels)]

    def _request_labels(self, items: Sequence[LineItem]) -> list[str]:
        if self._classifier is None:
            return []

        result = self._classifier.complete(self._build_labeling_prompt(items))
        if not result.success:
            classification_requests_total.labels(task="labeling", status="failed").inc()
            logger.warning(
                f"Category labeling unavailable, using '{DEFAULT_CATEGORY}': {result.error}"
            )
            return []

        answers = parse_json_array(result.text)
        if answers is None:
            classification_requests_total.labels(task="labeling", status="unparseable").inc()
            logger.warning(f"Unparseable labeling response, using '{DEFAULT_CATEGORY}'")
            return []
        classification_requests_total.labels(task="labeling", status="success").inc()
        if len(answers) != len(items):
            logger.warning(f"Labeling returned {len(answers)} labels for {len(items)} items")

        return [normalize_label(answer) for answer in answers]

    def _build_labeling_prompt(self, items: Sequence[LineItem]) -> str:
        """Build the labeling prompt.

        Args:
            items: Line items to label

        Returns:
            Formatted prompt string
        """
        vocabulary = ", ".join(CATEGORY_LABELS)
        listing = "\n".join(
            f"{index}. {item.description} ({item.amount})" for index, item in enumerate(items, 1)
        )
        return f"""You are categorizing invoice line items for a household spending summary.

CATEGORIES: {vocabulary}

INSTRUCTIONS:
- Maintenance: repairs, servicing, call-outs, labour, cleaning
- Appliance: purchase or replacement of appliances and equipment
- License: licences, subscriptions, permits, certificates
- Other: anything else
- Answer with exactly one category per line item, in the same order
- Return ONLY a JSON array of category names, no other text

LINE ITEMS:
{listing}

Example output for 3 items: ["Maintenance", "Other", "Appliance"]

JSON array:"""
