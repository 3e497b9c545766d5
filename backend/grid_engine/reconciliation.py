"""
Grid Reconciliation Module

The engine owns the grid, the per-cell provenance map and the per-row citation
map of one open spreadsheet. Extraction, quoting and chat results are merged in
here; adapters only ever propose rows. Every mutating operation snapshots the
previous state into the history first.

Provenance and citation maps are keyed by row index, so anything that removes
rows has to renumber both maps along with the grid.
"""

import logging
import uuid
from dataclasses import replace
from typing import List, Dict, Optional, Tuple, Iterable, Any
from urllib.parse import urlparse

from .config import DEFAULT_MODEL
from .conversation import ChatAttachment, ChatTurn, ConversationSession
from .data_structures import (
    AI_TAG,
    USER_TAG,
    CHAT_SOURCE_ID,
    CHAT_SOURCE_LABEL,
    QUOTING_SOURCE_ID,
    QUOTING_SINGLE_SOURCE_ID,
    QUOTING_SOURCE_LABEL,
    ApiCitation,
    ChatRowUpdate,
    ChatUpdate,
    DocumentState,
    ExtractedRow,
    Grid,
    MergeReport,
    QuotedRow,
    ReferenceDocument,
    ReferenceFile,
    RowSource,
    extraction_tag,
    normalize_cell,
    normalize_row,
    source_id_from_tag,
)
from .extraction import extract_data_from_reference
from .gemini_client import fetch_available_models
from .history import HistoryManager, MAX_HISTORY
from .quoting import quote_products

logger = logging.getLogger(__name__)

QUOTE_COLUMNS = ("Net Price", "Price/Unit", "Est. Delivery")
COLOR_PALETTE_SIZE = 6

QUOTING_FAILED_MESSAGE = "Quoting failed or found no results. Data not modified."


# ==============================================================================
# ===== PURE STATE TRANSFORMS =====
# ==============================================================================

def domain_of(url: Optional[str]) -> str:
    """Short display name for a quote's source URL"""
    if not url:
        return "AI Search"
    try:
        host = urlparse(url if url.startswith("http") else f"https://{url}").hostname
    except ValueError:
        return "External Source"
    if not host:
        return "External Source"
    return host[4:] if host.startswith("www.") else host


def remove_source_rows(state: DocumentState, source_id: str) -> DocumentState:
    """Drop every data row contributed by ``source_id`` and close the gaps

    A row belongs to the source if any of its cells carries the source's
    extraction tag or its citation names the source. Row 0 is always kept.
    """
    if not state.grid:
        return state.copy()

    tag = extraction_tag(source_id)
    owned_rows = {r for (r, _), cell_tag in state.provenance.items() if cell_tag == tag}
    owned_rows.update(r for r, source in state.citations.items() if source.source_id == source_id)
    owned_rows.discard(0)

    keep = [r for r in range(len(state.grid)) if r not in owned_rows]
    remap = {old: new for new, old in enumerate(keep)}

    cleaned = DocumentState(
        grid=[list(state.grid[r]) for r in keep],
        provenance={(remap[r], c): t for (r, c), t in state.provenance.items() if r in remap},
        citations={remap[r]: s for r, s in state.citations.items() if r in remap},
        references=list(state.references),
    )
    removed = len(state.grid) - len(keep)
    if removed:
        logger.info(f"🧹 Removed {removed} rows contributed by {source_id}")
    return cleaned


def append_extracted_rows(state: DocumentState, reference: ReferenceFile,
                          rows: Iterable[ExtractedRow]) -> DocumentState:
    """Append extracted rows, tagging every cell with the reference's tag"""
    merged = state.copy()
    tag = extraction_tag(reference.id)
    width = len(merged.headers)

    for extracted in rows:
        row = list(extracted.data)
        if len(row) < width:
            row.extend([""] * (width - len(row)))
        row_index = len(merged.grid)
        merged.grid.append(row)
        for c in range(len(row)):
            merged.provenance[(row_index, c)] = tag
        if extracted.citation is not None:
            merged.citations[row_index] = RowSource(reference.id, reference.display_name, extracted.citation)

    return merged


def ensure_quote_columns(state: DocumentState) -> Tuple[DocumentState, Dict[str, int]]:
    """Find (case-insensitive substring) or append the three quoting columns

    Returns:
        The state (padded when columns were added) and a column index per name
    """
    result = state.copy()
    headers = result.grid[0]
    columns: Dict[str, int] = {}
    added = []

    for name in QUOTE_COLUMNS:
        idx = next((i for i, h in enumerate(headers) if name.lower() in h.lower()), -1)
        if idx == -1:
            idx = len(headers)
            headers.append(name)
            added.append(name)
        columns[name] = idx

    if added:
        width = len(headers)
        for row in result.grid[1:]:
            if len(row) < width:
                row.extend([""] * (width - len(row)))
        logger.info(f"➕ Added quoting columns: {added}")

    return result, columns


def apply_quotes(state: DocumentState, quotes: Iterable[QuotedRow], columns: Dict[str, int],
                 source_id: str) -> Tuple[DocumentState, int]:
    """Write quote values into the rows named by each quote's row_id

    Quotes the model never returned and row ids outside the grid are skipped.

    Returns:
        New state and the number of rows written
    """
    merged = state.copy()
    width = len(merged.headers)
    applied = 0

    for quote in quotes:
        r = quote.row_id
        if not quote.returned or not 1 <= r < len(merged.grid):
            continue

        row = merged.grid[r]
        if len(row) < width:
            row.extend([""] * (width - len(row)))

        values = {
            "Net Price": quote.total_net_price,
            "Price/Unit": quote.net_price_per_unit,
            "Est. Delivery": quote.estimated_delivery,
        }
        for name, value in values.items():
            c = columns[name]
            row[c] = value
            merged.provenance[(r, c)] = AI_TAG

        merged.citations[r] = RowSource(
            source_id,
            QUOTING_SOURCE_LABEL,
            ApiCitation(endpoint=domain_of(quote.source_url), reasoning=quote.reasoning,
                        url=quote.source_url or None),
        )
        applied += 1

    return merged, applied


def _tag_changed_cells(provenance: Dict, old_grid: Grid, new_grid: Grid, rows: Iterable[int]):
    for r in rows:
        new_row = new_grid[r]
        old_row = old_grid[r] if r < len(old_grid) else None
        for c, value in enumerate(new_row):
            if old_row is None or c >= len(old_row) or old_row[c] != value:
                provenance[(r, c)] = AI_TAG
        # Cells cut off by a shorter replacement row lose their tag
        for key in [k for k in provenance if k[0] == r and k[1] >= len(new_row)]:
            del provenance[key]


def apply_structured_chat_rows(state: DocumentState,
                               rows: Iterable[ChatRowUpdate]) -> Tuple[DocumentState, MergeReport]:
    """Merge indexed chat rows: in-range index overwrites, anything else appends

    Rows the update does not mention are left untouched.
    """
    merged = state.copy()
    report = MergeReport()
    touched = set()

    for update in rows:
        index = update.index
        if index is not None and 0 <= index < len(merged.grid):
            merged.grid[index] = list(update.data)
            report.updated += 1
        else:
            index = len(merged.grid)
            merged.grid.append(list(update.data))
            report.added += 1
        touched.add(index)

        if update.citation is not None:
            merged.citations[index] = RowSource(CHAT_SOURCE_ID, CHAT_SOURCE_LABEL, update.citation)

    _tag_changed_cells(merged.provenance, state.grid, merged.grid, sorted(touched))
    return merged, report


def apply_grid_replacement(state: DocumentState, new_grid: Grid) -> Tuple[DocumentState, MergeReport]:
    """Legacy chat mode: replace the whole grid and tag what actually changed"""
    if not new_grid:
        raise ValueError("Replacement grid must contain at least the header row")

    replaced = DocumentState(
        grid=[list(row) for row in new_grid],
        provenance={(r, c): t for (r, c), t in state.provenance.items() if r < len(new_grid)},
        citations={r: s for r, s in state.citations.items() if r < len(new_grid)},
        references=list(state.references),
    )
    _tag_changed_cells(replaced.provenance, state.grid, replaced.grid, range(len(replaced.grid)))
    return replaced, MergeReport(replaced=True)


# ==============================================================================
# ===== ENGINE =====
# ==============================================================================

class GridReconciliationEngine:
    """Owns one spreadsheet's grid, provenance, citations and history"""

    def __init__(self, client=None, default_model: str = DEFAULT_MODEL, max_history: int = MAX_HISTORY):
        """
        Args:
            client: Gateway client handed to the adapters; None uses the global client
            default_model: Model used until the user picks another or a fallback happens
            max_history: Undo depth
        """
        self.client = client
        self.default_model = default_model
        self.current_model = default_model
        self.available_models: List[str] = [default_model]

        self.state = DocumentState()
        self.original_grid: Optional[Grid] = None
        self.file_name = ""
        self.history = HistoryManager(max_history)

        self.extraction_errors: Dict[str, str] = {}
        self.color_counter = 0

        self.fallback_warning: Optional[str] = None
        self.last_error: Optional[str] = None

        self.conversation = ConversationSession(client)

    # ----- helpers -----

    @property
    def is_loaded(self) -> bool:
        return bool(self.state.grid)

    @property
    def reference_files(self) -> List[ReferenceFile]:
        return self.state.references

    @property
    def has_edits(self) -> bool:
        return bool(self.state.provenance)

    def _require_loaded(self):
        if not self.is_loaded:
            raise ValueError("No spreadsheet loaded")

    def _commit(self):
        self.history.commit(self.state)

    def get_reference(self, file_id: str) -> ReferenceFile:
        for ref in self.reference_files:
            if ref.id == file_id:
                return ref
        raise KeyError(f"Unknown reference file: {file_id}")

    def _note_fallback(self, attempted: str, final_model: str):
        if final_model != attempted:
            self.current_model = final_model
            self.fallback_warning = f"Model {attempted} failed. Switched to {final_model}."
            logger.warning(f"⚠️ {self.fallback_warning}")

    # ----- models -----

    def refresh_models(self) -> List[str]:
        if self.client is not None:
            self.available_models = self.client.list_available_models(self.default_model)
        else:
            self.available_models = fetch_available_models(self.default_model)
        return self.available_models

    def select_model(self, model_name: str):
        if model_name not in self.available_models:
            raise ValueError(f"Unknown model: {model_name}")
        self.current_model = model_name

    # ----- main file -----

    def load_grid(self, grid: Grid, file_name: str = ""):
        """Start a fresh document; previous references and history are dropped"""
        normalized = [normalize_row(row) for row in grid]
        if not normalized:
            raise ValueError("The file is empty or has no valid data")

        self.state = DocumentState(grid=normalized)
        self.original_grid = [list(row) for row in normalized]
        self.file_name = file_name
        self.history.clear()
        self.extraction_errors = {}
        self.color_counter = 0
        self.fallback_warning = None
        self.last_error = None
        logger.info(f"📂 Loaded '{file_name}' with {len(normalized) - 1} data rows")

    def reset_to_original(self):
        """Restore the grid as uploaded; undoable like any other action"""
        self._require_loaded()
        self._commit()
        self.state = DocumentState(
            grid=[list(row) for row in self.original_grid],
            references=list(self.state.references),
        )
        self.fallback_warning = None
        self.extraction_errors = {}
        self.last_error = None
        logger.info("🔄 Reset to original data")

    def undo(self) -> bool:
        previous = self.history.undo(self.state)
        if previous is None:
            return False
        self.state = previous
        return True

    def redo(self) -> bool:
        following = self.history.redo(self.state)
        if following is None:
            return False
        self.state = following
        return True

    # ----- manual edits -----

    def edit_cell(self, row: int, col: int, value: Any) -> bool:
        """Write a user value; returns False (and records nothing) if unchanged"""
        self._require_loaded()
        if not 0 <= row < len(self.state.grid) or col < 0:
            raise IndexError(f"Cell ({row}, {col}) is outside the grid")

        value = normalize_cell(value)
        current_row = self.state.grid[row]
        current = current_row[col] if col < len(current_row) else ""
        if current == value:
            return False

        self._commit()
        edited = self.state.copy()
        target = edited.grid[row]
        if col >= len(target):
            target.extend([""] * (col + 1 - len(target)))
        target[col] = value
        edited.provenance[(row, col)] = USER_TAG
        self.state = edited
        return True

    def cell_source(self, row: int, col: int) -> Optional[Dict[str, Any]]:
        """Resolve who last wrote a cell; None for pristine cells"""
        tag = self.state.provenance.get((row, col))
        if tag is None:
            return None
        source_id = source_id_from_tag(tag)
        if source_id is None:
            return {"kind": tag}
        ref = next((f for f in self.reference_files if f.id == source_id), None)
        return {"kind": "extraction", "source_id": source_id,
                "color_slot": ref.color_slot if ref else None}

    # ----- reference extraction -----

    async def _run_extraction(self, reference: ReferenceFile, state: DocumentState) -> DocumentState:
        """Clean the reference's previous rows, then merge a fresh extraction

        The cleaned state is returned even when extraction fails, so a retry
        never leaves stale or duplicate rows behind.
        """
        self.extraction_errors.pop(reference.id, None)
        cleaned = remove_source_rows(state, reference.id)
        attempted = self.current_model

        result = await extract_data_from_reference(
            reference.document, cleaned.headers, attempted, self.available_models, client=self.client
        )

        if result is None:
            self.extraction_errors[reference.id] = (
                f"Could not extract valid tabular data from {reference.display_name}."
            )
            return cleaned

        self._note_fallback(attempted, result.final_model)
        if not result.rows:
            self.extraction_errors[reference.id] = f"No matching data found in {reference.display_name}."
            return cleaned

        logger.info(f"📥 Merging {len(result.rows)} rows from {reference.display_name}")
        return append_extracted_rows(cleaned, reference, result.rows)

    async def add_reference_files(self, documents: List[ReferenceDocument]) -> List[ReferenceFile]:
        """Attach reference files and extract from them one after another"""
        self._require_loaded()
        new_refs = [
            ReferenceFile(
                id=uuid.uuid4().hex,
                display_name=doc.name,
                color_slot=(self.color_counter + i) % COLOR_PALETTE_SIZE,
                document=doc,
            )
            for i, doc in enumerate(documents)
        ]
        if not new_refs:
            return []

        self._commit()
        self.state = self.state.copy()
        self.state.references.extend(new_refs)
        self.color_counter += len(new_refs)

        # Sequential on purpose: each merge renumbers rows the next one sees
        for ref in new_refs:
            self.state = await self._run_extraction(ref, self.state)
        return new_refs

    async def retry_extraction(self, file_id: str):
        """Re-run extraction for one reference, replacing its previous rows"""
        self._require_loaded()
        ref = self.get_reference(file_id)
        self._commit()
        self.state = await self._run_extraction(ref, self.state)

    def remove_reference_file(self, file_id: str):
        """Detach a reference and remove every row it contributed"""
        self._require_loaded()
        ref = self.get_reference(file_id)
        self._commit()
        self.extraction_errors.pop(file_id, None)
        cleaned = remove_source_rows(self.state, file_id)
        cleaned.references.remove(ref)
        self.state = cleaned

    # ----- quoting -----

    async def auto_quote(self) -> bool:
        """Quote every data row; the grid is untouched if quoting yields nothing"""
        self._require_loaded()
        self.last_error = None
        before = self.state
        prepared, columns = ensure_quote_columns(before)

        quotes = await quote_products(prepared.grid[1:], prepared.headers, self.current_model,
                                      self.available_models, client=self.client)
        if not quotes or not any(q.returned for q in quotes):
            self.last_error = QUOTING_FAILED_MESSAGE
            logger.warning(f"⚠️ {QUOTING_FAILED_MESSAGE}")
            return False

        self.history.commit(before)
        self.state, applied = apply_quotes(prepared, quotes, columns, QUOTING_SOURCE_ID)
        logger.info(f"💶 Quoted {applied} of {len(quotes)} rows")
        return True

    async def quote_row(self, row_index: int) -> bool:
        """Quote a single data row"""
        self._require_loaded()
        if not 1 <= row_index < len(self.state.grid):
            raise IndexError(f"Row {row_index} is not a data row")
        self.last_error = None
        before = self.state
        prepared, columns = ensure_quote_columns(before)

        quotes = await quote_products([prepared.grid[row_index]], prepared.headers, self.current_model,
                                      self.available_models, client=self.client)
        if not quotes or not quotes[0].returned:
            self.last_error = f"Quoting failed for row {row_index}."
            return False

        self.history.commit(before)
        # The adapter numbers its single input row 1
        quote = replace(quotes[0], row_id=row_index)
        self.state, _ = apply_quotes(prepared, [quote], columns, QUOTING_SINGLE_SOURCE_ID)
        return True

    # ----- conversation -----

    def apply_chat_update(self, update: ChatUpdate) -> MergeReport:
        """Merge a parsed chat update into the grid"""
        self._require_loaded()
        if update.is_replacement:
            merged, report = apply_grid_replacement(self.state, update.replacement)
            logger.warning("⚠️ Chat replaced the whole grid")
        else:
            merged, report = apply_structured_chat_rows(self.state, update.rows)
            logger.info(f"💬 Chat updated {report.updated} and added {report.added} rows")
        if report.updated or report.added or report.replaced:
            self._commit()
            self.state = merged
        return report

    async def chat(self, prompt: str, attachments: Iterable[ChatAttachment] = ()) -> Optional[ChatTurn]:
        return await self.conversation.send(
            prompt,
            self.state.grid,
            self.current_model,
            self.available_models,
            attachments,
            on_data_update=self.apply_chat_update if self.is_loaded else None,
        )

    # ----- serialization -----

    def to_dict(self) -> Dict[str, Any]:
        snapshot = self.state.to_dict()
        snapshot.update({
            "file_name": self.file_name,
            "reference_files": [ref.to_dict() for ref in self.reference_files],
            "extraction_errors": dict(self.extraction_errors),
            "fallback_warning": self.fallback_warning,
            "last_error": self.last_error,
            "can_undo": self.history.can_undo,
            "can_redo": self.history.can_redo,
            "has_edits": self.has_edits,
            "current_model": self.current_model,
            "available_models": list(self.available_models),
        })
        return snapshot
