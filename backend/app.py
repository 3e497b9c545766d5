"""
Grid Assist Backend - Flask API Server

This server provides the REST API endpoints for the AI-assisted spreadsheet editor.
It handles the main spreadsheet upload, manual edits, undo/redo, reference file
extraction, auto quoting, the assistant chat and exporting the edited sheet.
"""

from flask import Flask, request, jsonify, send_file
from flask_cors import CORS
import os
import logging
import asyncio
import threading
import traceback
from datetime import datetime
from werkzeug.utils import secure_filename

from grid_engine import (
    GridReconciliationEngine,
    ReferenceDocument,
    ChatAttachment,
    Settings,
    load_environment,
    initialize_client,
    get_usage_stats,
    is_ai_enabled,
    parse_file,
    save_grid,
    SUPPORTED_EXPORT_TYPES,
)
from grid_engine.spreadsheet_io import EXPORT_MIMETYPES, file_extension

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Ensure all engine modules show INFO level logs
logging.getLogger('grid_engine.gemini_client').setLevel(logging.INFO)
logging.getLogger('grid_engine.extraction').setLevel(logging.INFO)
logging.getLogger('grid_engine.quoting').setLevel(logging.INFO)
logging.getLogger('grid_engine.reconciliation').setLevel(logging.INFO)
logging.getLogger('grid_engine.conversation').setLevel(logging.INFO)

load_environment()
settings = Settings.from_env()

# Initialize Flask app
app = Flask(__name__)
CORS(app)  # Enable CORS for frontend integration

# Configuration
app.config['MAX_CONTENT_LENGTH'] = settings.max_content_length_mb * 1024 * 1024

# Initialize Gemini client on startup
gemini_client = None
try:
    if settings.ai_enabled:
        gemini_client = initialize_client(settings.gemini_api_key, settings.model_request_timeout)
        logger.info("🤖 Gemini AI client initialized successfully")
    else:
        logger.error("❌ Cannot initialize Gemini client: API key is missing")
except Exception as e:
    logger.error(f"❌ Gemini client initialization failed: {e}")
    logger.error("AI features will be disabled without Gemini client")
    gemini_client = None

# One open document per server process; requests are served one at a time
editor = GridReconciliationEngine(
    client=gemini_client,
    default_model=settings.default_model,
    max_history=settings.max_history,
)
editor_lock = threading.Lock()

if gemini_client is not None:
    editor.refresh_models()


def allowed_file(filename):
    """Check if the uploaded file has an allowed extension"""
    return '.' in filename and file_extension(filename) in settings.allowed_extensions


def run_async(coro):
    """Drive an engine coroutine to completion on a fresh event loop"""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def state_response(**extra):
    payload = editor.to_dict()
    payload.update(extra)
    return jsonify(payload)


def require_loaded():
    if not editor.is_loaded:
        return jsonify({"error": "No spreadsheet loaded"}), 400
    return None


@app.route('/api/health', methods=['GET'])
def health_check():
    """Health check endpoint with system status"""
    usage_stats = get_usage_stats()
    return jsonify({
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "service": "Grid Assist Backend API",
        "ai_enabled": is_ai_enabled(),
        "components": {
            "gemini_client": {
                "status": "healthy" if "error" not in usage_stats else "error",
                "api_key_status": "present" if settings.ai_enabled else "missing",
                "usage": usage_stats
            },
            "editor": {
                "status": "healthy",
                "document_loaded": editor.is_loaded,
                "reference_files": len(editor.reference_files)
            }
        }
    })


@app.route('/api/models', methods=['GET'])
def list_models():
    """Available models and the one currently used for AI features"""
    try:
        with editor_lock:
            if request.args.get('refresh'):
                editor.refresh_models()
            return jsonify({
                "available_models": editor.available_models,
                "current_model": editor.current_model
            })
    except Exception as e:
        logger.error(f"Model listing error: {str(e)}")
        return jsonify({"error": f"Failed to list models: {str(e)}"}), 500


@app.route('/api/models/current', methods=['POST'])
def select_model():
    data = request.get_json(silent=True) or {}
    model_name = data.get('model')
    if not model_name:
        return jsonify({"error": "Missing required parameter: model"}), 400
    try:
        with editor_lock:
            editor.select_model(model_name)
            return jsonify({"current_model": editor.current_model})
    except ValueError as e:
        return jsonify({"error": str(e)}), 400


@app.route('/api/upload', methods=['POST'])
def upload_file():
    """
    Load the main spreadsheet
    Resets edits, history and reference files
    """
    try:
        if 'file' not in request.files:
            return jsonify({"error": "No file provided"}), 400

        file = request.files['file']
        if file.filename == '':
            return jsonify({"error": "No file selected"}), 400

        if not allowed_file(file.filename):
            return jsonify({"error": f"Invalid file type. Supported: {', '.join(settings.allowed_extensions)}"}), 400

        filename = secure_filename(file.filename) or file.filename
        try:
            grid = parse_file(file.read(), filename)
        except Exception as e:
            logger.error(f"Parse error for {filename}: {str(e)}")
            return jsonify({"error": "Failed to parse the file."}), 400

        if not grid:
            return jsonify({"error": "The file is empty or has no valid data"}), 400

        with editor_lock:
            editor.load_grid(grid, filename)
            logger.info(f"📁 Spreadsheet loaded: {filename}")
            return state_response(message="File loaded successfully")

    except Exception as e:
        logger.error(f"Upload error: {str(e)}")
        logger.error(traceback.format_exc())
        return jsonify({"error": f"Upload failed: {str(e)}"}), 500


@app.route('/api/state', methods=['GET'])
def get_state():
    with editor_lock:
        return state_response()


@app.route('/api/cell', methods=['POST'])
def edit_cell():
    """Manual single-cell edit"""
    data = request.get_json(silent=True) or {}
    if 'row' not in data or 'col' not in data or 'value' not in data:
        return jsonify({"error": "Missing required parameters"}), 400
    try:
        with editor_lock:
            not_loaded = require_loaded()
            if not_loaded:
                return not_loaded
            changed = editor.edit_cell(int(data['row']), int(data['col']), data['value'])
            return state_response(changed=changed)
    except (IndexError, ValueError, TypeError) as e:
        return jsonify({"error": str(e)}), 400


@app.route('/api/undo', methods=['POST'])
def undo():
    with editor_lock:
        return state_response(changed=editor.undo())


@app.route('/api/redo', methods=['POST'])
def redo():
    with editor_lock:
        return state_response(changed=editor.redo())


@app.route('/api/reset', methods=['POST'])
def reset():
    with editor_lock:
        not_loaded = require_loaded()
        if not_loaded:
            return not_loaded
        editor.reset_to_original()
        return state_response()


@app.route('/api/references', methods=['POST'])
def add_references():
    """
    Attach reference files
    Extraction runs file by file, each merge seeing the previous one
    """
    try:
        files = request.files.getlist('files')
        if not files:
            return jsonify({"error": "No file provided"}), 400

        documents = [
            ReferenceDocument(name=f.filename, content=f.read(), mime_type=f.mimetype or "")
            for f in files if f.filename
        ]

        with editor_lock:
            not_loaded = require_loaded()
            if not_loaded:
                return not_loaded
            added = run_async(editor.add_reference_files(documents))
            logger.info(f"📎 Attached {len(added)} reference files")
            return state_response(added=[ref.to_dict() for ref in added])

    except Exception as e:
        logger.error(f"Reference extraction error: {str(e)}")
        logger.error(traceback.format_exc())
        return jsonify({"error": f"Extraction failed: {str(e)}"}), 500


@app.route('/api/references/<file_id>/retry', methods=['POST'])
def retry_reference(file_id):
    try:
        with editor_lock:
            run_async(editor.retry_extraction(file_id))
            return state_response()
    except KeyError:
        return jsonify({"error": "Reference file not found"}), 404
    except Exception as e:
        logger.error(f"Retry error: {str(e)}")
        logger.error(traceback.format_exc())
        return jsonify({"error": f"Extraction failed: {str(e)}"}), 500


@app.route('/api/references/<file_id>', methods=['DELETE'])
def remove_reference(file_id):
    try:
        with editor_lock:
            editor.remove_reference_file(file_id)
            return state_response()
    except KeyError:
        return jsonify({"error": "Reference file not found"}), 404
    except ValueError as e:
        return jsonify({"error": str(e)}), 400


@app.route('/api/quote', methods=['POST'])
def auto_quote():
    """Quote every data row"""
    try:
        with editor_lock:
            not_loaded = require_loaded()
            if not_loaded:
                return not_loaded
            quoted = run_async(editor.auto_quote())
            return state_response(quoted=quoted)
    except Exception as e:
        logger.error(f"Auto quoting error: {str(e)}")
        logger.error(traceback.format_exc())
        return jsonify({"error": "Quoting process failed."}), 500


@app.route('/api/quote/<int:row_index>', methods=['POST'])
def quote_row(row_index):
    try:
        with editor_lock:
            not_loaded = require_loaded()
            if not_loaded:
                return not_loaded
            quoted = run_async(editor.quote_row(row_index))
            return state_response(quoted=quoted)
    except IndexError as e:
        return jsonify({"error": str(e)}), 400
    except Exception as e:
        logger.error(f"Single row quote error: {str(e)}")
        logger.error(traceback.format_exc())
        return jsonify({"error": "Quoting process failed."}), 500


@app.route('/api/chat', methods=['GET'])
def get_chat():
    with editor_lock:
        return jsonify({"turns": [turn.to_dict() for turn in editor.conversation.turns]})


@app.route('/api/chat', methods=['POST'])
def send_chat():
    """Send a chat message, optionally with attached files (multipart)"""
    if request.files:
        prompt = request.form.get('prompt', '')
        attachments = [
            ChatAttachment(name=f.filename, content=f.read(), mime_type=f.mimetype or "")
            for f in request.files.getlist('files') if f.filename
        ]
    else:
        prompt = (request.get_json(silent=True) or {}).get('prompt', '')
        attachments = []

    if not prompt and not attachments:
        return jsonify({"error": "Empty message"}), 400

    with editor_lock:
        reply = run_async(editor.chat(prompt, attachments))
        return state_response(
            reply=reply.to_dict() if reply else None,
            turns=[turn.to_dict() for turn in editor.conversation.turns]
        )


@app.route('/api/chat', methods=['DELETE'])
def clear_chat():
    with editor_lock:
        editor.conversation.clear()
        return jsonify({"turns": []})


@app.route('/api/export', methods=['GET'])
def export_grid():
    """Download the edited spreadsheet as xlsx or csv"""
    try:
        with editor_lock:
            not_loaded = require_loaded()
            if not_loaded:
                return not_loaded

            detected = file_extension(editor.file_name)
            fmt = request.args.get('format') or (detected if detected in SUPPORTED_EXPORT_TYPES else 'xlsx')
            if fmt not in SUPPORTED_EXPORT_TYPES:
                return jsonify({"error": f"Unsupported format. Supported: {', '.join(SUPPORTED_EXPORT_TYPES)}"}), 400

            base_name = request.args.get('name') or os.path.splitext(editor.file_name)[0] or 'data'
            download_name = f"{secure_filename(base_name) or 'data'}.{fmt}"
            output = save_grid(editor.state.grid, fmt)

        return send_file(
            output,
            as_attachment=True,
            download_name=download_name,
            mimetype=EXPORT_MIMETYPES[fmt]
        )

    except Exception as e:
        logger.error(f"Export error: {str(e)}")
        return jsonify({"error": f"Export failed: {str(e)}"}), 500


@app.errorhandler(413)
def too_large(e):
    """Handle file too large error"""
    return jsonify({"error": f"File too large. Maximum size is {settings.max_content_length_mb}MB"}), 413


@app.errorhandler(404)
def not_found(e):
    """Handle not found error"""
    return jsonify({"error": "Endpoint not found"}), 404


@app.errorhandler(500)
def internal_error(e):
    """Handle internal server error"""
    return jsonify({"error": "Internal server error"}), 500


if __name__ == '__main__':
    logger.info("🚀 Starting Grid Assist Backend API Server...")
    logger.info(f"📏 Max file size: {settings.max_content_length_mb}MB")

    if gemini_client is not None:
        logger.info("✅ Server starting with Gemini AI enabled")
    else:
        logger.warning("⚠️ Server starting WITHOUT Gemini AI (check .env file)")
        logger.warning("🔧 Place your .env file in the /backend/ folder with: GEMINI_API_KEY=your_actual_key")

    app.run(debug=True, host='0.0.0.0', port=5000)
