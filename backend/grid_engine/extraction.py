"""
Reference Extraction Module

Asks the model to pull rows matching the current column headers out of a
reference document, together with a citation for every row. An answer with no
rows is a valid outcome ("nothing found"); only transport failures and replies
that cannot be decoded count as failures.
"""

import base64
import json
import logging
from typing import List, Optional, Any

from .data_structures import (
    ExtractedRow,
    ExtractionResult,
    ReferenceDocument,
    normalize_row,
    parse_citation,
)
from .gemini_client import GatewayError, get_client, AiNotConfiguredError
from .prompts import EXTRACTION_SYSTEM_INSTRUCTION, PROMPT_METADATA, format_extraction_prompt
from .spreadsheet_io import grid_to_csv_text

logger = logging.getLogger(__name__)

DEFAULT_DOCUMENT_MIME_TYPE = "application/pdf"


def build_document_part(document: ReferenceDocument) -> dict:
    """Content part carrying the reference file itself"""
    if document.is_spreadsheet:
        try:
            csv_text = grid_to_csv_text(document.content, document.name)
            return {"text": f"\n[FILE CONTENT: {document.name}]\n{csv_text}\n[END FILE]\n"}
        except Exception as e:
            # .xls/.ods and damaged workbooks: let the model look at the bytes
            logger.warning(f"⚠️ Cannot render {document.name} as CSV ({e}), sending raw bytes")

    return {
        "inline_data": {
            "mime_type": document.mime_type or DEFAULT_DOCUMENT_MIME_TYPE,
            "data": base64.b64encode(document.content).decode('ascii'),
        }
    }


def parse_extraction_response(response_text: str) -> Optional[List[ExtractedRow]]:
    """Turn the model's reply into extracted rows

    Returns:
        List of rows (possibly empty), or None if the reply is not valid JSON
    """
    start = response_text.find('{')
    end = response_text.rfind('}')
    if start == -1 or end == -1 or end < start:
        logger.info("📭 No JSON object in extraction response, treating as zero rows")
        return []

    try:
        parsed = json.loads(response_text[start:end + 1])
    except json.JSONDecodeError as e:
        logger.error(f"❌ Extraction JSON parse error: {e}")
        logger.debug(f"Raw response (first 500 chars): {response_text[:500]}")
        return None

    raw_rows = parsed.get("rows") if isinstance(parsed, dict) else None
    if not isinstance(raw_rows, list):
        return []

    rows = []
    dropped = 0
    for raw in raw_rows:
        if not isinstance(raw, dict) or not isinstance(raw.get("data"), list):
            dropped += 1
            continue
        citation = parse_citation(raw.get("citation"))
        if raw.get("citation") is not None and citation is None:
            logger.debug(f"Dropping malformed citation: {raw.get('citation')}")
        rows.append(ExtractedRow(data=normalize_row(raw["data"]), citation=citation))

    if dropped:
        logger.warning(f"⚠️ Dropped {dropped} extracted rows without a data array")
    return rows


async def extract_data_from_reference(document: ReferenceDocument, target_columns: List[Any],
                                      start_model: str, available_models: List[str],
                                      client=None) -> Optional[ExtractionResult]:
    """Extract rows for ``target_columns`` from a reference document

    Args:
        document: The uploaded reference file
        target_columns: Header row of the main grid
        start_model: Model tried first
        available_models: Ordered fallback chain
        client: Gateway client, defaults to the global one

    Returns:
        ExtractionResult (rows may be empty), or None on gateway or parse failure
    """
    client = client or get_client()
    if client is None:
        logger.error(f"❌ Cannot extract from {document.name}: {AiNotConfiguredError()}")
        return None

    headers = normalize_row(target_columns)
    contents = [{
        "role": "user",
        "parts": [
            build_document_part(document),
            {"text": format_extraction_prompt(headers, document.is_spreadsheet)},
        ],
    }]

    logger.info(f"🔎 Extracting rows from '{document.name}' for {len(headers)} columns")
    try:
        result = await client.generate_with_fallback(
            start_model,
            available_models,
            EXTRACTION_SYSTEM_INSTRUCTION,
            contents,
            lambda failed, nxt: logger.warning(f"🔄 Extraction: {failed} failed, retrying with {nxt}"),
            {"temperature": PROMPT_METADATA["extraction"]["temperature"]},
        )
    except GatewayError as e:
        logger.error(f"❌ Extraction failed for {document.name}: {e}")
        return None

    rows = parse_extraction_response(result.text)
    if rows is None:
        return None

    logger.info(f"✅ Extracted {len(rows)} rows from '{document.name}' with {result.final_model}")
    return ExtractionResult(rows=rows, final_model=result.final_model)
