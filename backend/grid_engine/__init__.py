"""
Grid Engine Package

This package contains the core modules of the AI-assisted spreadsheet editor.

Modules:
- data_structures: Grid, provenance, citation and adapter result shapes
- gemini_client: Model gateway with forward-only fallback
- extraction: Row extraction from reference documents, with citations
- quoting: Price and delivery lookup through a search-enabled model
- history: Bounded undo/redo of document snapshots
- reconciliation: The engine that merges every contribution into the grid
- conversation: Chat turns and conversational grid updates
- spreadsheet_io: Reading and writing spreadsheet files
"""

# Import key data structures for easy access
from .data_structures import (
    DocumentCitation,
    SpreadsheetCitation,
    ApiCitation,
    RowSource,
    DocumentState,
    ReferenceDocument,
    ReferenceFile,
    ExtractedRow,
    ExtractionResult,
    QuotedRow,
    ChatUpdate,
    ChatRowUpdate,
    MergeReport,
    GenerationResult,
    parse_citation,
)

# Import configuration
from .config import Settings, load_environment, DEFAULT_MODEL

# Import Gemini client components
from .gemini_client import (
    GatewayError,
    AllModelsExhaustedError,
    AiNotConfiguredError,
    GeminiClient,
    initialize_client,
    get_client,
    is_ai_enabled,
    generate_with_fallback,
    fetch_available_models,
    get_usage_stats,
)

# Import adapters
from .extraction import extract_data_from_reference
from .quoting import quote_products

# Import state management
from .history import HistoryManager
from .conversation import ChatAttachment, ChatTurn, ConversationSession
from .reconciliation import GridReconciliationEngine

# Import file I/O
from .spreadsheet_io import parse_file, save_grid, SUPPORTED_EXPORT_TYPES

__version__ = "1.0.0"
__author__ = "Grid Assist Team"

# Define what gets imported with "from grid_engine import *"
__all__ = [
    'DocumentCitation',
    'SpreadsheetCitation',
    'ApiCitation',
    'RowSource',
    'DocumentState',
    'ReferenceDocument',
    'ReferenceFile',
    'ExtractedRow',
    'ExtractionResult',
    'QuotedRow',
    'ChatUpdate',
    'ChatRowUpdate',
    'MergeReport',
    'GenerationResult',
    'parse_citation',
    'Settings',
    'load_environment',
    'DEFAULT_MODEL',
    'GatewayError',
    'AllModelsExhaustedError',
    'AiNotConfiguredError',
    'GeminiClient',
    'initialize_client',
    'get_client',
    'is_ai_enabled',
    'generate_with_fallback',
    'fetch_available_models',
    'get_usage_stats',
    'extract_data_from_reference',
    'quote_products',
    'HistoryManager',
    'ChatAttachment',
    'ChatTurn',
    'ConversationSession',
    'GridReconciliationEngine',
    'parse_file',
    'save_grid',
    'SUPPORTED_EXPORT_TYPES',
]
