"""
AI Prompts Module

This module contains all the AI prompt templates used by the editor's AI features.
Centralizing prompts here makes them easy to modify and maintain without touching business logic.
"""

import json
from typing import List, Dict, Any

import google.generativeai as genai

# Extraction: used by extraction.extract_data_from_reference()
EXTRACTION_SYSTEM_INSTRUCTION = (
    "You are a robotic data scraper. You have no imagination. "
    "You only extract facts present in the text."
)

EXTRACTION_PROMPT = """
ROLE: Forensic Data Auditor.
TASK: Extract a Bill of Materials (BOM) strictly from the provided {file_type}.

TARGET HEADERS:
{headers_json}

STRICT RULES (VIOLATION = FAILURE):
1. EVIDENCE FIRST: You must find the EXACT text in the document before extracting any data.
2. VERBATIM QUOTES: The "quote" field must be a COPY-PASTE substring from the file. Do not summarize or paraphrase the quote.
3. NO HALLUCINATION:
   - If the document contains source code, scripts, or text without components or part numbers, return {{ "rows": [] }}.
   - Do not invent part numbers.
   - Do not guess quantities. If quantity is not listed, leave it blank or "1" only if implied by a singular noun.
4. PAGE NUMBERS: If the document has page markers (e.g. "Seite 1/18"), use them. If not, count the pages sequentially.

OUTPUT JSON FORMAT:
{{
  "rows": [
    {{
      "data": ["(Value for Col 1)", "(Value for Col 2)", ...],
      "citation": {citation_example}
    }}
  ]
}}
"""

SPREADSHEET_CITATION_EXAMPLE = '{ "type": "spreadsheet", "location": "Row 2", "reasoning": "Found in \'Motors\' sheet" }'
DOCUMENT_CITATION_EXAMPLE = '{ "type": "document", "page": "5", "quote": "exact substring from text" }'

# Quoting: used by quoting.quote_products()
QUOTING_SYSTEM_INSTRUCTION = (
    "You are a procurement agent with access to Google Search. You never invent URLs."
)

QUOTING_PROMPT = """
ROLE: B2B Procurement Assistant.

TASK: Find the current price and availability for the products below using Google Search.

TARGET STORE: Conrad.de (primary), Voelkner, or similar German industrial suppliers.

INPUT DATA:
HEADERS: {headers_json}
ROWS: {rows_json}

SEARCH STRATEGY:
1. **Search Query**: For each item, search for "Conrad [Part Number] [Manufacturer]" or "buy [Part Number] [Manufacturer] price".
2. **Formatting**: If a search fails, try different formats (e.g. "8806.000" instead of "8806000").
3. **Verify**: Ensure the product page matches the description.

PRICING RULES:
1. **Net Price**: We need B2B (Net) prices. If only Gross (with VAT) is found, calculate: Net = Gross / 1.19.
2. **Pack Size**: Check if it's a pack (e.g. "Pack of 10").
3. **Delivery**: Look for "Sofort verfügbar" (1-3 days) or specific dates.

CRITICAL URL RULES (VIOLATION = FAILURE):
- **sourceUrl**: You MUST use the EXACT URL returned by the Google Search tool.
- **DO NOT GUESS URLs**: Do not construct URLs like "shop.com/product/123" if you didn't see them.
- If the search tool does not provide a direct link to a product page, leave sourceUrl empty.
- **Consistency**: The 'sourceUrl' domain must match the supplier mentioned in 'reasoning'.

OUTPUT REQUIREMENTS:
- You MUST return a JSON Array.
- You MUST return an object for EVERY single input row ({row_count} rows).
- If a product is NOT found, set values to "{not_found}", sourceUrl to "", and reasoning to "Product not found".

OUTPUT FORMAT (JSON ONLY):
[
  {{
    "rowId": 1,
    "totalNetPrice": "125.50",
    "netPricePerUnit": "12.55",
    "packQuantity": 10,
    "estimatedDelivery": "1-3 Werktage",
    "sourceUrl": "https://www.conrad.de/de/p/...",
    "reasoning": "Found on Conrad.de (Art. 2251303). Price 149.35€ Gross. In Stock."
  }}
]
"""

NOT_FOUND_VALUE = "N/A"

# Chat: used by conversation.ConversationSession.send()
CHAT_BASE_INSTRUCTION = "You are an AI assistant integrated into a spreadsheet editor."

CHAT_UPDATE_INSTRUCTIONS = """

INSTRUCTIONS:
1. Answer questions based on the data.
2. If the user asks to UPDATE, MODIFY, or ADD data, you must return a valid JSON block containing ONLY the changes.

FORMAT FOR UPDATES:
You must return a valid JSON object with a "rows" key inside a ```json fenced block.
Each item in "rows" must contain a "data" array and optionally an "index".

- TO UPDATE A ROW: Include the "index" property (the absolute row index, e.g., 5).
- TO ADD A NEW ROW: Omit the "index" property.

Example Response:
```json
{
  "rows": [
    {
      "index": 4,
      "data": ["Updated Col1", "Updated Col2"],
      "citation": {"type": "api", "endpoint": "User Instruction", "reasoning": "Fixed typo in row 4 based on user request"}
    },
    {
      "data": ["New Col1", "New Col2"],
      "citation": {"type": "api", "endpoint": "Gemini Reasoning", "reasoning": "Added new entry"}
    }
  ]
}
```

CITATION RULES:
- If using data from an attached file: set "type": "document", include "page" and "quote".
- If calculating/reasoning: set "type": "api", "endpoint": "Gemini Reasoning", and explain in "reasoning".
- If simple edit: set "type": "api", "endpoint": "User Instruction", "reasoning": "User explicitly asked to set X to Y".
"""

CHAT_CONTEXT_ROW_LIMIT = 500


def format_extraction_prompt(headers: List[str], is_spreadsheet: bool) -> str:
    """Build the extraction task for one reference file"""
    return EXTRACTION_PROMPT.format(
        file_type="SPREADSHEET/CSV" if is_spreadsheet else "DOCUMENT (PDF/Image)",
        headers_json=json.dumps(headers, ensure_ascii=False),
        citation_example=SPREADSHEET_CITATION_EXAMPLE if is_spreadsheet else DOCUMENT_CITATION_EXAMPLE,
    )


def format_quoting_prompt(headers: List[str], items: List[Dict[str, Any]]) -> str:
    """Build the quoting task; items already carry their 1-based rowId"""
    return QUOTING_PROMPT.format(
        headers_json=json.dumps(headers, ensure_ascii=False),
        rows_json=json.dumps(items, ensure_ascii=False),
        row_count=len(items),
        not_found=NOT_FOUND_VALUE,
    )


def format_chat_instruction(grid: List[List[str]]) -> str:
    """System instruction for a chat turn, with the current sheet inlined"""
    instruction = CHAT_BASE_INSTRUCTION

    if grid:
        instruction += "\n\nCURRENT SPREADSHEET CONTENT:"
        instruction += f"\nHEADINGS (Row 0): {json.dumps(grid[0], ensure_ascii=False)}"
        if len(grid) > 1:
            data_rows = grid[1:CHAT_CONTEXT_ROW_LIMIT + 1]
            instruction += f"\nDATA (Rows 1-{len(data_rows)}): {json.dumps(data_rows, ensure_ascii=False)}"
        else:
            instruction += "\nDATA: [No data rows yet]"
        instruction += '\n\nNOTE: "Row 0" is the header. The first actual data row is "Row 1". Use these absolute indices.'

    return instruction + CHAT_UPDATE_INSTRUCTIONS


# Google Search grounding for Gemini 2.x models
SEARCH_TOOLS = [genai.protos.Tool(google_search=genai.protos.Tool.GoogleSearch())]

PROMPT_METADATA = {
    "extraction": {"temperature": 0.0, "tools": None},
    "quoting": {"temperature": 0.0, "tools": SEARCH_TOOLS},
    "chat": {"temperature": 0.0, "tools": None},
}
