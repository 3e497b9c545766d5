"""
Grid Engine Data Structures Module

This module contains the data structure blueprints (dataclasses) shared by the
gateway, the adapters and the reconciliation engine. They keep the grid, its
per-cell provenance and its per-row citations in one consistent shape.
"""

import copy
import math
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Tuple, Any, Union

# A grid is a list of rows; row 0 holds the column labels
Grid = List[List[str]]
CellKey = Tuple[int, int]

# Provenance tags
USER_TAG = "user"
AI_TAG = "ai"
EXTRACTION_PREFIX = "extraction:"

# Source ids that are not reference files
CHAT_SOURCE_ID = "gemini-chat"
CHAT_SOURCE_LABEL = "Gemini Chat"
QUOTING_SOURCE_ID = "ai-quoting"
QUOTING_SINGLE_SOURCE_ID = "ai-quoting-single"
QUOTING_SOURCE_LABEL = "AI Quoting"


def extraction_tag(source_id: str) -> str:
    """Provenance tag for cells produced by extracting ``source_id``"""
    return f"{EXTRACTION_PREFIX}{source_id}"


def source_id_from_tag(tag: Optional[str]) -> Optional[str]:
    """Return the source id of an extraction tag, or None for any other tag"""
    if tag and tag.startswith(EXTRACTION_PREFIX):
        return tag[len(EXTRACTION_PREFIX):]
    return None


def normalize_cell(value: Any) -> str:
    """Convert a raw cell value (from a file or a model response) to a string"""
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
        return str(value)
    if isinstance(value, str):
        return value
    # pandas/numpy scalars
    if hasattr(value, 'item'):
        return normalize_cell(value.item())
    return str(value)


def normalize_row(row: Any) -> List[str]:
    return [normalize_cell(cell) for cell in row]


# ==============================================================================
# ===== CITATIONS =====
# ==============================================================================

@dataclass(frozen=True)
class DocumentCitation:
    """Evidence is a verbatim quote from a non-tabular document"""
    page: str
    quote: str
    type: str = field(default="document", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "page": self.page, "quote": self.quote}


@dataclass(frozen=True)
class SpreadsheetCitation:
    """Evidence is a cell or sheet reference inside a tabular reference file"""
    location: str
    reasoning: str = ""
    type: str = field(default="spreadsheet", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "location": self.location, "reasoning": self.reasoning}


@dataclass(frozen=True)
class ApiCitation:
    """Evidence is model reasoning or a live web search result"""
    endpoint: str
    reasoning: str = ""
    url: Optional[str] = None
    type: str = field(default="api", init=False)

    def to_dict(self) -> Dict[str, Any]:
        result = {"type": self.type, "endpoint": self.endpoint, "reasoning": self.reasoning}
        if self.url:
            result["url"] = self.url
        return result


Citation = Union[DocumentCitation, SpreadsheetCitation, ApiCitation]


def _text_field(raw: Dict[str, Any], key: str) -> Optional[str]:
    value = raw.get(key)
    if value is None or isinstance(value, (dict, list)):
        return None
    text = normalize_cell(value).strip()
    return text or None


def parse_citation(raw: Any) -> Optional[Citation]:
    """Validate a citation object coming from a model response

    Args:
        raw: Decoded JSON value of the "citation" field

    Returns:
        The matching citation variant, or None if the object does not satisfy
        the required fields of its declared type
    """
    if not isinstance(raw, dict):
        return None

    citation_type = raw.get("type")
    if citation_type == "document":
        quote = _text_field(raw, "quote")
        if quote is None:
            return None
        return DocumentCitation(page=_text_field(raw, "page") or "", quote=quote)

    if citation_type == "spreadsheet":
        location = _text_field(raw, "location")
        if location is None:
            return None
        return SpreadsheetCitation(location=location, reasoning=_text_field(raw, "reasoning") or "")

    if citation_type == "api":
        endpoint = _text_field(raw, "endpoint")
        if endpoint is None:
            return None
        return ApiCitation(
            endpoint=endpoint,
            reasoning=_text_field(raw, "reasoning") or "",
            url=_text_field(raw, "url"),
        )

    return None


@dataclass(frozen=True)
class RowSource:
    """Citation record attached to a single grid row"""
    source_id: str
    source_label: str
    citation: Citation

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "source_label": self.source_label,
            "citation": self.citation.to_dict(),
        }


# ==============================================================================
# ===== ADAPTER RESULTS =====
# ==============================================================================

@dataclass
class GenerationResult:
    """Text returned by the gateway plus the model that actually answered"""
    text: str
    final_model: str


@dataclass
class ExtractedRow:
    """A single row proposed by the extraction adapter"""
    data: List[str]
    citation: Optional[Citation] = None


@dataclass
class ExtractionResult:
    """Outcome of a successful extraction call; rows may be empty"""
    rows: List[ExtractedRow]
    final_model: str


@dataclass
class QuotedRow:
    """Price and delivery data found for one input row (1-based row_id)"""
    row_id: int
    total_net_price: str = ""
    net_price_per_unit: str = ""
    estimated_delivery: str = ""
    pack_quantity: str = ""
    source_url: str = ""
    reasoning: str = ""
    returned: bool = True  # False when the model left this row out entirely


@dataclass
class ChatRowUpdate:
    """One entry of a structured conversational update"""
    data: List[str]
    index: Optional[int] = None
    citation: Optional[Citation] = None


@dataclass
class ChatUpdate:
    """Proposed grid change parsed from a conversational reply"""
    rows: List[ChatRowUpdate] = field(default_factory=list)
    replacement: Optional[Grid] = None  # legacy full-grid mode

    @property
    def is_replacement(self) -> bool:
        return self.replacement is not None


@dataclass
class MergeReport:
    """What a chat merge did to the grid"""
    updated: int = 0
    added: int = 0
    replaced: bool = False


# ==============================================================================
# ===== DOCUMENT STATE =====
# ==============================================================================

@dataclass
class ReferenceDocument:
    """Raw reference file as uploaded by the user"""
    name: str
    content: bytes
    mime_type: str = ""

    @property
    def is_spreadsheet(self) -> bool:
        return self.name.lower().endswith(('.csv', '.xlsx', '.xlsm', '.xls', '.ods'))


@dataclass
class ReferenceFile:
    """Handle for an attached reference file"""
    id: str
    display_name: str
    color_slot: int
    document: ReferenceDocument

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "display_name": self.display_name, "color_slot": self.color_slot}


@dataclass
class DocumentState:
    """The grid together with its provenance and citation maps

    The attached reference handles travel with the snapshot so that undoing a
    removal brings back both the rows and the file they came from.
    """
    grid: Grid = field(default_factory=list)
    provenance: Dict[CellKey, str] = field(default_factory=dict)
    citations: Dict[int, RowSource] = field(default_factory=dict)
    references: List[ReferenceFile] = field(default_factory=list)

    def copy(self) -> 'DocumentState':
        # Citations are frozen, so a shallow dict copy is enough for them
        return DocumentState(
            grid=[list(row) for row in self.grid],
            provenance=dict(self.provenance),
            citations=dict(self.citations),
            references=list(self.references),
        )

    @property
    def headers(self) -> List[str]:
        return list(self.grid[0]) if self.grid else []

    def to_dict(self) -> Dict[str, Any]:
        return {
            "grid": copy.deepcopy(self.grid),
            "provenance": {f"{r}-{c}": tag for (r, c), tag in sorted(self.provenance.items())},
            "citations": {str(r): source.to_dict() for r, source in sorted(self.citations.items())},
        }
