"""User history and preferences passed to the extraction model."""

import logging

from ledgerscan.config import settings
from ledgerscan.db.sqlite import Database

logger = logging.getLogger(__name__)

MAX_RULES = 30
RECENT_TRANSACTIONS = 50
MAX_RECENT_EXAMPLES = 25


def build_user_context(database: Database, household_id: str) -> str:
    """
    Summarize learned category rules and recent categorizations.

    Returns an empty string when there is nothing to say or the store fails;
    extraction works without context.
    """
    try:
        rules = database.list_category_rules(household_id, limit=MAX_RULES)
        recent = database.get_recent_transactions(household_id, limit=RECENT_TRANSACTIONS)
    except Exception as e:
        logger.warning(f"Could not load user context for household {household_id}: {e}")
        return ""

    lines = []
    if rules:
        lines.append("Category rules:")
        for rule in rules:
            lines.append(f'- when description contains "{rule.pattern}" use category {rule.category_slug}')

    seen = set()
    examples = []
    for txn in recent:
        key = txn.description.strip().lower()
        if not key or key in seen or not txn.category_slug:
            continue
        seen.add(key)
        kind = "income" if txn.amount > 0 else "expense"
        examples.append(f'- "{txn.description}" -> {txn.category_slug} ({kind})')
        if len(examples) >= MAX_RECENT_EXAMPLES:
            break

    if examples:
        lines.append("Recent categorizations:")
        lines.extend(examples)

    return "\n".join(lines)[: settings.user_context_max_chars]
