from flask import Flask, request, jsonify, send_file, render_template_string
from flask_cors import CORS
import os
import uuid
from werkzeug.utils import secure_filename
import json
import logging
import threading
import time

from analyser import AudioFileAnalyser
from capture import CaptureSession
from geometry_export import export_obj, to_stl_bytes
from logging_config import setup_logging
from mesh_to_web import mesh_to_glb, mesh_to_threejs_json, get_mesh_info

app = Flask(__name__)
CORS(app)

logger = logging.getLogger(__name__)

# Configuration
UPLOAD_FOLDER = 'uploads'
OUTPUT_FOLDER = 'outputs'
ALLOWED_EXTENSIONS = {'wav', 'mp3', 'flac', 'm4a', 'ogg'}
MAX_DURATION = 300
STALE_AFTER_SECONDS = 3600
DOWNLOAD_KINDS = {'obj': 'obj_file', 'mtl': 'mtl_file', 'stl': 'stl_file', 'glb': 'glb_file'}

# Create directories if they don't exist
os.makedirs(UPLOAD_FOLDER, exist_ok=True)
os.makedirs(OUTPUT_FOLDER, exist_ok=True)

# Store conversion status
conversion_status = {}

INDEX_PAGE = """<!doctype html>
<title>Spectrogram sculpture</title>
<h1>Spectrogram sculpture</h1>
<form action="/upload" method="post" enctype="multipart/form-data">
  <input type="file" name="audio" accept="audio/*">
  <input type="number" name="duration" value="{{ duration }}" min="1" max="{{ max_duration }}">
  <button type="submit">Sculpt</button>
</form>
"""


def allowed_file(filename):
    return '.' in filename and \
           filename.rsplit('.', 1)[1].lower() in ALLOWED_EXTENSIONS


@app.route('/')
def index():
    """Serve a minimal upload page"""
    return render_template_string(INDEX_PAGE, duration=20, max_duration=MAX_DURATION)


@app.route('/upload', methods=['POST'])
def upload_file():
    """Handle audio file upload and start conversion"""
    try:
        if 'audio' not in request.files:
            return jsonify({'error': 'No audio file provided'}), 400

        file = request.files['audio']
        if file.filename == '':
            return jsonify({'error': 'No file selected'}), 400

        if not allowed_file(file.filename):
            return jsonify({'error': 'Invalid file type. Please upload an audio file.'}), 400

        try:
            duration = int(request.form.get('duration', 20))
        except ValueError:
            return jsonify({'error': 'Duration must be a whole number of seconds'}), 400
        if not 1 <= duration <= MAX_DURATION:
            return jsonify({'error': f'Duration must be between 1 and {MAX_DURATION} seconds'}), 400

        # Generate unique ID for this conversion
        conversion_id = str(uuid.uuid4())

        # Save uploaded file
        filename = secure_filename(file.filename)
        file_path = os.path.join(UPLOAD_FOLDER, f"{conversion_id}_{filename}")
        file.save(file_path)

        conversion_status[conversion_id] = {
            'status': 'processing',
            'progress': 0,
            'message': 'Starting conversion...',
            'created_time': time.time(),
            'obj_file': None,
            'mtl_file': None,
            'stl_file': None,
            'glb_file': None,
            'error': None
        }

        # Start conversion in background thread
        thread = threading.Thread(target=convert_audio_background,
                                  args=(conversion_id, file_path, duration, file.filename))
        thread.start()

        return jsonify({
            'conversion_id': conversion_id,
            'message': 'Conversion started'
        })

    except Exception as e:
        logger.exception("Upload failed")
        return jsonify({'error': str(e)}), 500


def output_name_for(original_filename, duration, conversion_id):
    """First two words of the upload, the duration and a short id"""
    name_without_ext = os.path.splitext(secure_filename(original_filename))[0]
    words = name_without_ext.replace('_', ' ').split()[:2]
    first_two_words = "_".join(words) if words else "audio"
    return f"{first_two_words}_{duration}s_{conversion_id[:8]}"


def _write_output(filename, payload):
    path = os.path.join(OUTPUT_FOLDER, filename)
    mode = 'wb' if isinstance(payload, bytes) else 'w'
    with open(path, mode) as f:
        f.write(payload)
    return path


def convert_audio_background(conversion_id, file_path, duration, original_filename):
    """Background conversion: analyse, capture, export"""
    status = conversion_status[conversion_id]
    try:
        status['message'] = 'Loading audio file...'
        status['progress'] = 10
        analyser = AudioFileAnalyser.from_file(file_path, duration=duration)

        status['message'] = 'Capturing spectrum...'
        status['progress'] = 30
        session = CaptureSession().run(analyser)

        status['message'] = 'Building solid...'
        status['progress'] = 70
        output_name = output_name_for(original_filename, duration, conversion_id)
        solid = session.preview if session.preview is not None else session.build_solid()
        obj_text, mtl_text = export_obj(solid, output_name)

        _write_output(f"{output_name}.obj", obj_text)
        _write_output(f"{output_name}.mtl", mtl_text)
        _write_output(f"{output_name}.stl", to_stl_bytes(solid, output_name))
        _write_output(f"{output_name}.glb", mesh_to_glb(solid))
        json_file = _write_output(f"{output_name}.json", json.dumps(mesh_to_threejs_json(solid)))

        status['status'] = 'completed'
        status['progress'] = 100
        status['message'] = 'Conversion completed successfully!'
        status['obj_file'] = f"{output_name}.obj"
        status['mtl_file'] = f"{output_name}.mtl"
        status['stl_file'] = f"{output_name}.stl"
        status['glb_file'] = f"{output_name}.glb"
        status['json_file'] = json_file
        status['mesh_info'] = get_mesh_info(solid)
        logger.info("Conversion %s completed: %s", conversion_id, output_name)

    except Exception as e:
        logger.exception("Conversion %s failed", conversion_id)
        status['status'] = 'error'
        status['error'] = str(e)
        status['message'] = f'Conversion failed: {str(e)}'

    finally:
        # Clean up uploaded file
        if os.path.exists(file_path):
            os.remove(file_path)


@app.route('/status/<conversion_id>')
def get_status(conversion_id):
    """Get conversion status"""
    if conversion_id not in conversion_status:
        return jsonify({'error': 'Invalid conversion ID'}), 404

    return jsonify(conversion_status[conversion_id])


@app.route('/download/<conversion_id>/<kind>')
def download_file(conversion_id, kind):
    """Download the generated OBJ, MTL, STL or GLB file"""
    if conversion_id not in conversion_status:
        return jsonify({'error': 'Invalid conversion ID'}), 404
    if kind not in DOWNLOAD_KINDS:
        return jsonify({'error': f'Unknown file kind: {kind}'}), 404

    status = conversion_status[conversion_id]
    filename = status.get(DOWNLOAD_KINDS[kind])
    if status['status'] != 'completed' or not filename:
        return jsonify({'error': 'File not ready for download'}), 400

    file_path = os.path.join(OUTPUT_FOLDER, filename)
    if not os.path.exists(file_path):
        return jsonify({'error': 'File not found'}), 404

    return send_file(os.path.abspath(file_path), as_attachment=True, download_name=filename)


@app.route('/preview/<conversion_id>')
def serve_preview_data(conversion_id):
    """Serve 3D preview data (Three.js JSON format)"""
    if conversion_id not in conversion_status:
        return jsonify({'error': 'Invalid conversion ID'}), 404

    status = conversion_status[conversion_id]
    if status['status'] != 'completed' or not status.get('json_file'):
        return jsonify({'error': 'Preview data not ready'}), 400

    json_file_path = status['json_file']
    if not os.path.exists(json_file_path):
        return jsonify({'error': 'Preview file not found'}), 404

    try:
        with open(json_file_path, 'r') as f:
            preview_data = json.load(f)

        # Add mesh info to the response
        preview_data['mesh_info'] = status.get('mesh_info', {})

        return jsonify(preview_data)

    except (OSError, ValueError) as e:
        logger.exception("Could not read preview for %s", conversion_id)
        return jsonify({'error': f'Error loading preview data: {str(e)}'}), 500


@app.route('/cleanup')
def cleanup_old_files():
    """Clean up conversions older than an hour"""
    current_time = time.time()
    to_remove = [conv_id for conv_id, status in conversion_status.items()
                 if current_time - status.get('created_time', current_time) > STALE_AFTER_SECONDS]

    for conv_id in to_remove:
        status = conversion_status.pop(conv_id)
        for key in list(DOWNLOAD_KINDS.values()):
            if status.get(key):
                file_path = os.path.join(OUTPUT_FOLDER, status[key])
                if os.path.exists(file_path):
                    os.remove(file_path)
        json_file = status.get('json_file')
        if json_file and os.path.exists(json_file):
            os.remove(json_file)

    logger.info("Cleaned up %d old conversions", len(to_remove))
    return jsonify({'message': f'Cleaned up {len(to_remove)} old conversions'})


if __name__ == '__main__':
    setup_logging()
    print("Spectrogram Sculpture Server")
    print("=" * 40)
    print("Starting server on http://localhost:8080")
    print("Upload audio files to generate printable spectrogram solids!")
    print("=" * 40)

    app.run(debug=True, host='0.0.0.0', port=8080)
