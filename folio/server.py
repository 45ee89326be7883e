#!/usr/bin/env python3
"""
Folio Content Server
Flask server exposing portfolio content sections and the admin write pipeline
"""

import logging
import signal
import socket
import sys
from datetime import datetime, timezone

from flask import Flask, current_app, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from . import __version__
from .audit import AuditLog
from .backends import build_backend
from .config import load_settings
from .errors import FolioError, RateLimited
from .firebase_service import attach_audit_mirror
from .forms import get_form, load_forms, validate_inquiry
from .gatekeeper import WriteGatekeeper, WriteRequest
from .ratelimit import RateLimiter
from .store import SectionStore

logger = logging.getLogger(__name__)


SECURITY_HEADERS = {
    'X-Content-Type-Options': 'nosniff',
    'X-Frame-Options': 'DENY',
    'Referrer-Policy': 'strict-origin-when-cross-origin',
    'Permissions-Policy': 'geolocation=(), microphone=(), camera=()',
    'Strict-Transport-Security': 'max-age=31536000; includeSubDomains',
    'Content-Security-Policy': "default-src 'none'; frame-ancestors 'none'; base-uri 'none'",
}

RATE_LIMIT_HEADERS = ['X-RateLimit-Limit', 'X-RateLimit-Remaining', 'X-RateLimit-Reset', 'Retry-After']


def get_client_ip():
    """Client IP from proxy headers, falling back to the socket address"""
    forwarded = request.headers.get('X-Forwarded-For')
    if forwarded:
        return forwarded.split(',')[0].strip()
    real_ip = request.headers.get('X-Real-IP')
    if real_ip:
        return real_ip.strip()
    return request.remote_addr or 'unknown'


def services():
    return current_app.extensions['folio']


def read_json_body():
    """Parsed JSON body, or None when it is missing or cannot be parsed"""
    try:
        return request.get_json(silent=True)
    except RecursionError:
        logger.warning(f"Rejected deeply nested JSON body from {get_client_ip()}")
        return None


def error_response(error: FolioError):
    response = jsonify(error.to_dict())
    response.status_code = error.status_code
    if isinstance(error, RateLimited):
        response.headers['Retry-After'] = str(error.retry_after)
    return response


def apply_rate_headers(response, rate):
    response.headers['X-RateLimit-Limit'] = str(rate.limit)
    response.headers['X-RateLimit-Remaining'] = str(rate.remaining)
    response.headers['X-RateLimit-Reset'] = str(int(rate.reset_at))
    return response


def create_app(settings=None, backend=None, rate_limiter=None, audit_log=None, auth_rate_limiter=None):
    """Build the Flask app; collaborators can be injected for tests"""
    if settings is None:
        settings = load_settings()
    if backend is None:
        backend = build_backend(settings)
    if rate_limiter is None:
        rate_limiter = RateLimiter(settings.rate_limit_max, settings.rate_limit_window_seconds)
    if auth_rate_limiter is None:
        auth_rate_limiter = RateLimiter(settings.rate_limit_max, settings.rate_limit_window_seconds,
                                        clock=rate_limiter.clock)
    if audit_log is None:
        audit_log = AuditLog(settings.audit_log_capacity)
    store = SectionStore(backend)

    app = Flask(__name__)
    app.json.sort_keys = False
    CORS(app, resources={r'/api/*': {}, r'/sections/*': {}},
         allow_headers=['Content-Type', 'Authorization', 'X-CSRF-Token'],
         expose_headers=RATE_LIMIT_HEADERS + ['ETag'])

    app.extensions['folio'] = {
        'settings': settings,
        'store': store,
        'audit_log': audit_log,
        'rate_limiter': rate_limiter,
        'auth_rate_limiter': auth_rate_limiter,
        'firebase': attach_audit_mirror(audit_log, settings.firebase_service_account),
        'gatekeeper': WriteGatekeeper(
            secret=settings.admin_secret,
            store=store,
            rate_limiter=rate_limiter,
            audit_log=audit_log,
            max_bytes=settings.max_payload_bytes,
            password_hash=settings.admin_password_hash
        )
    }

    # bodies past this are never parsed; the write route reports them as a size violation
    app.config['MAX_CONTENT_LENGTH'] = settings.max_payload_bytes + 1024 * 1024

    register_routes(app)
    return app


def register_routes(app):
    @app.errorhandler(FolioError)
    def handle_folio_error(error):
        return error_response(error)

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'success': False, 'error': error.description or error.name}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        logger.error(f"Unhandled error on {request.method} {request.path}: {error}", exc_info=error)
        return jsonify({'success': False, 'error': 'Internal server error'}), 500

    @app.after_request
    def add_security_headers(response):
        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)
        return response

    @app.route('/api/status')
    def api_status():
        """Health check endpoint"""
        store = services()['store']
        return jsonify({
            'status': 'ok',
            'message': 'Folio server is running',
            'version': __version__,
            'storage': store.backend.describe()
        })

    @app.route('/api/data/<path:section>', methods=['GET'])
    @app.route('/sections/<path:section>', methods=['GET'])
    def api_get_section(section):
        """Get a content section"""
        document = services()['store'].read(section)
        response = jsonify(document.data)
        response.headers['ETag'] = f'"{document.version}"'
        return response

    @app.route('/api/data/<path:section>', methods=['POST'])
    @app.route('/sections/<path:section>', methods=['POST'])
    def api_save_section(section):
        """Replace a content section through the write pipeline"""
        try:
            body, oversize = read_json_body(), False
        except RequestEntityTooLarge:
            body, oversize = None, True

        write_request = WriteRequest(
            client_key=get_client_ip(),
            section=section,
            authorization=request.headers.get('Authorization'),
            csrf_token=request.headers.get('X-CSRF-Token'),
            body=body,
            oversize=oversize
        )
        result = services()['gatekeeper'].process(write_request)

        if result.error is not None:
            response = error_response(result.error)
        else:
            logger.info(f"✅ Section '{section}' updated by {write_request.client_key}")
            response = jsonify({
                'success': True,
                'message': 'Data updated successfully',
                'version': result.version
            })

        if result.rate is not None:
            apply_rate_headers(response, result.rate)
        return response

    @app.route('/api/auth/validate', methods=['POST'])
    def api_validate_password():
        """Confirm a client-computed password hash; issues no session"""
        body = read_json_body() or {}
        password_hash = body.get('passwordHash') if isinstance(body, dict) else None
        if not password_hash or not isinstance(password_hash, str):
            return jsonify({'valid': False, 'error': 'Invalid request format'}), 400

        client_ip = get_client_ip()
        rate = services()['auth_rate_limiter'].check(client_ip)
        if not rate.allowed:
            retry_after = services()['auth_rate_limiter'].retry_after(rate)
            return apply_rate_headers(error_response(RateLimited(retry_after=retry_after)), rate)

        try:
            valid = services()['gatekeeper'].confirm_password_hash(client_ip, password_hash)
        except FolioError as e:
            return jsonify({'valid': False, 'error': e.message}), e.status_code

        logger.info(f"Password validation attempt from {client_ip}: {'SUCCESS' if valid else 'FAILURE'}")
        response = jsonify({
            'valid': valid,
            'timestamp': datetime.now(timezone.utc).isoformat()
        })
        return apply_rate_headers(response, rate)

    @app.route('/api/cloudinary/config')
    def api_cloudinary_config():
        """Image upload settings for the admin panel"""
        settings = services()['settings']
        if not settings.cloudinary_cloud_name:
            logger.error('CLOUDINARY_CLOUD_NAME environment variable not set')
            return jsonify({
                'error': 'Cloudinary configuration not available',
                'configured': False
            }), 500

        return jsonify({
            'configured': True,
            'cloudName': settings.cloudinary_cloud_name,
            'uploadPreset': settings.cloudinary_upload_preset
        })

    @app.route('/api/forms')
    def api_get_forms():
        """Inquiry form definitions for every service"""
        return jsonify({'success': True, 'forms': load_forms()})

    @app.route('/api/forms/<service>')
    def api_get_form(service):
        return jsonify({'success': True, 'service': service, 'form': get_form(service)})

    @app.route('/api/forms/<service>/inquiry', methods=['POST'])
    def api_check_inquiry(service):
        """Validate and clean an inquiry before the client composes its message"""
        body = read_json_body()
        if not isinstance(body, dict):
            return jsonify({'success': False, 'error': 'Inquiry must be a JSON object'}), 400

        errors, cleaned = validate_inquiry(service, body)
        if errors:
            return jsonify({'success': False, 'errors': errors}), 400
        return jsonify({'success': True, 'service': service, 'data': cleaned})

    @app.route('/api/audit')
    def api_get_audit():
        """Audit trail for this instance; requires the admin credential"""
        gatekeeper = services()['gatekeeper']
        audit_log = services()['audit_log']
        write_request = WriteRequest(
            client_key=get_client_ip(),
            section='',
            authorization=request.headers.get('Authorization'),
            csrf_token=None,
            body=None,
            method='GET'
        )
        error = gatekeeper.authenticate(write_request)
        if error:
            audit_log.record(write_request.client_key, 'GET', '', 'read-audit', error.outcome, error.message)
            return error_response(error)

        entries = [entry.to_dict() for entry in audit_log.list()]
        result = {
            'success': True,
            'capacity': audit_log.capacity,
            'entries': entries
        }
        firebase = services()['firebase']
        if firebase is not None:
            result['shared'] = firebase.get_audit_entries()
        return jsonify(result)


def check_port_available(port, host='127.0.0.1'):
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        return s.connect_ex((host, port)) != 0


def signal_handler(sig, frame):
    logger.info('🛑 Gracefully shutting down server...')
    sys.exit(0)


def main():
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        settings = load_settings()
    except (ValueError, FileNotFoundError) as e:
        logger.error(f"❌ Invalid configuration: {e}")
        sys.exit(1)

    if not check_port_available(settings.port, settings.host):
        logger.error(f"❌ Port {settings.port} is already in use!")
        logger.info("🔧 Use a different port: FOLIO_PORT=8081 folio-server")
        sys.exit(1)

    app = create_app(settings)
    storage = app.extensions['folio']['store'].backend.describe()

    print(f"""
🚀 Folio Content Server Starting...
========================================
💾 Storage:   {storage}
🌐 Local URL: http://{settings.host}:{settings.port}
🔧 API:       http://{settings.host}:{settings.port}/api/
⏱️  Rate limit: {settings.rate_limit_max} writes / {settings.rate_limit_window_seconds}s per client

⏹️  Press Ctrl+C to stop the server
========================================
    """)

    try:
        app.run(
            host=settings.host,
            port=settings.port,
            debug=False,
            threaded=True,
            use_reloader=False
        )
    except KeyboardInterrupt:
        logger.info("🛑 Server stopped by user")
    except Exception as e:
        logger.error(f"❌ Server error: {e}")


if __name__ == '__main__':
    main()
