"""
Auto Quoting Module

Looks up net prices and delivery times for grid rows through a search-enabled
model. Every input row comes back as exactly one QuotedRow: rows the model
checked but could not find carry "N/A" values, rows the model never mentioned
come back with ``returned=False``.
"""

import json
import logging
import re
from typing import List, Optional, Any, Dict

from .data_structures import QuotedRow, normalize_cell, normalize_row
from .gemini_client import GatewayError, get_client
from .prompts import QUOTING_SYSTEM_INSTRUCTION, PROMPT_METADATA, format_quoting_prompt

logger = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```json\s*([\s\S]*?)\s*```")
_BARE_ARRAY = re.compile(r"\[[\s\S]*\]")


def _extract_json_text(response_text: str) -> Optional[str]:
    fenced = _FENCED_JSON.search(response_text)
    if fenced:
        return fenced.group(1).strip()
    bare = _BARE_ARRAY.search(response_text)
    if bare:
        return bare.group(0).strip()
    return None


def _coerce_row_id(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _quoted_row_from_dict(row_id: int, item: Dict[str, Any]) -> QuotedRow:
    return QuotedRow(
        row_id=row_id,
        total_net_price=normalize_cell(item.get("totalNetPrice")),
        net_price_per_unit=normalize_cell(item.get("netPricePerUnit")),
        estimated_delivery=normalize_cell(item.get("estimatedDelivery")),
        pack_quantity=normalize_cell(item.get("packQuantity")),
        source_url=normalize_cell(item.get("sourceUrl")).strip(),
        reasoning=normalize_cell(item.get("reasoning")),
    )


def parse_quoting_response(response_text: str, row_count: int) -> Optional[List[QuotedRow]]:
    """Parse the quoting reply into one QuotedRow per input row

    Args:
        response_text: Raw model text
        row_count: Number of rows that were sent

    Returns:
        Rows sorted by row_id, or None if no JSON array could be decoded
    """
    json_text = _extract_json_text(response_text)
    if json_text is None:
        logger.warning("⚠️ No JSON found in quoting response")
        return None

    try:
        parsed = json.loads(json_text)
    except json.JSONDecodeError as e:
        logger.error(f"❌ Quoting JSON parse error: {e}")
        return None

    if not isinstance(parsed, list):
        logger.error(f"❌ Quoting response is a {type(parsed).__name__}, expected a list")
        return None

    by_id: Dict[int, QuotedRow] = {}
    for item in parsed:
        if not isinstance(item, dict):
            continue
        row_id = _coerce_row_id(item.get("rowId"))
        if row_id is None or not 1 <= row_id <= row_count:
            logger.debug(f"Ignoring quote with invalid rowId: {item.get('rowId')!r}")
            continue
        if row_id in by_id:
            continue
        by_id[row_id] = _quoted_row_from_dict(row_id, item)

    missing = [row_id for row_id in range(1, row_count + 1) if row_id not in by_id]
    if missing:
        logger.warning(f"⚠️ Model returned no quote for rows {missing}")
        for row_id in missing:
            by_id[row_id] = QuotedRow(row_id=row_id, returned=False)

    return [by_id[row_id] for row_id in sorted(by_id)]


async def quote_products(rows: List[List[Any]], headers: List[Any], start_model: str,
                         available_models: List[str], client=None) -> Optional[List[QuotedRow]]:
    """Quote every row through the search-enabled model

    Args:
        rows: Data rows (no header row)
        headers: Header row, used as context for the model
        start_model: Model tried first
        available_models: Ordered fallback chain
        client: Gateway client, defaults to the global one

    Returns:
        One QuotedRow per input row (row_id is the 1-based position), or None
    """
    if not rows:
        return []

    client = client or get_client()
    if client is None:
        logger.error("❌ Cannot quote: Gemini client not initialized")
        return None

    items = [{"rowId": index + 1, "data": normalize_row(row)} for index, row in enumerate(rows)]
    contents = [{"role": "user", "parts": [{"text": format_quoting_prompt(normalize_row(headers), items)}]}]
    meta = PROMPT_METADATA["quoting"]

    logger.info(f"💶 Requesting quotes for {len(items)} rows")
    try:
        result = await client.generate_with_fallback(
            start_model,
            available_models,
            QUOTING_SYSTEM_INSTRUCTION,
            contents,
            None,
            {"temperature": meta["temperature"]},
            meta["tools"],
        )
    except GatewayError as e:
        logger.error(f"❌ Quoting failed: {e}")
        return None

    quotes = parse_quoting_response(result.text, len(items))
    if quotes is not None:
        found = sum(1 for q in quotes if q.returned)
        logger.info(f"✅ Quoting returned {found}/{len(quotes)} rows with {result.final_model}")
    return quotes
