from flask import Flask, request, jsonify, session, abort
from interceptor.access_gate import get_or_create_secret_key
from interceptor.background_guard import acquire_background_lock
from interceptor.config import InterceptorConfig, env_flag
from interceptor.errors import public_error_message
from interceptor.logutil import configure_logging
from interceptor.navigation import LOADING, NavigationDecision, NavigationDispatcher
from interceptor.orchestrator import get_interceptor
from interceptor.scheduler import start_refresh_scheduler, start_startup_refresh
import concurrent.futures
import logging
import os
import secrets
from urllib.parse import urlparse

configure_logging()
logger = logging.getLogger(__name__)

app = Flask(__name__)
_config = InterceptorConfig.from_env()
interceptor = get_interceptor()
dispatcher = NavigationDispatcher(interceptor.handle_navigation, max_workers=_config.nav_workers)

# Policy URLs and navigation events are small; keep request bodies bounded.
try:
    app.config.setdefault(
        'MAX_CONTENT_LENGTH',
        int((os.environ.get('MAX_CONTENT_LENGTH') or str(1024 * 1024)).strip()),
    )
except ValueError:
    app.config.setdefault('MAX_CONTENT_LENGTH', 1024 * 1024)

# Session unlocks ride on the signed cookie; persist the key so they survive restarts.
_env_secret = (os.environ.get('FLASK_SECRET_KEY') or os.environ.get('SECRET_KEY') or '').strip()
if _env_secret:
    app.secret_key = _env_secret
else:
    _secret_path = (os.environ.get('FLASK_SECRET_PATH') or '').strip() or os.path.join(_config.data_dir, 'flask_secret.key')
    try:
        app.secret_key = get_or_create_secret_key(_secret_path)
    except OSError:
        logger.exception("Could not persist session secret; unlocks will reset on restart")
        app.secret_key = secrets.token_urlsafe(48)

app.config.setdefault('SESSION_COOKIE_HTTPONLY', True)
app.config.setdefault('SESSION_COOKIE_SAMESITE', 'Lax')
if env_flag('SESSION_COOKIE_SECURE'):
    app.config['SESSION_COOKIE_SECURE'] = True


_CSRF_EXEMPT_ENDPOINTS = ('navigate',)


def _ensure_csrf_token() -> str:
    tok = session.get('_csrf_token')
    if not tok or not isinstance(tok, str):
        tok = secrets.token_urlsafe(32)
        session['_csrf_token'] = tok
    return tok


@app.before_request
def _csrf_guard():
    if env_flag('DISABLE_CSRF'):
        return None
    if request.method not in ('POST', 'PUT', 'PATCH', 'DELETE'):
        return None
    if request.endpoint in _CSRF_EXEMPT_ENDPOINTS:
        return None

    sent = (request.headers.get('X-CSRF-Token') or '').strip()
    if not sent:
        sent = (request.form.get('csrf_token') or '').strip()

    expected = _ensure_csrf_token()
    if not sent or not secrets.compare_digest(sent, expected):
        abort(403)
    return None


@app.after_request
def _security_headers(resp):
    resp.headers.setdefault('X-Content-Type-Options', 'nosniff')
    resp.headers.setdefault('X-Frame-Options', 'DENY')
    resp.headers.setdefault('Referrer-Policy', 'no-referrer')
    resp.headers.setdefault('Cache-Control', 'no-store')
    return resp


def _session_unlocked() -> bool:
    return session.get('options_unlocked') is True


def _options_locked() -> bool:
    return interceptor.lock_state().locked and not _session_unlocked()


def _payload() -> dict:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


_disable_background = env_flag('DISABLE_BACKGROUND')

if not _disable_background and acquire_background_lock():
    # One refresh right away, then on the periodic schedule.
    try:
        start_startup_refresh(interceptor)
        start_refresh_scheduler(
            interceptor,
            delay_seconds=_config.refresh_delay_seconds,
            interval_seconds=_config.refresh_interval_seconds,
        )
    except Exception:
        logger.exception("Failed to start policy refresh workers")


@app.route('/health', methods=['GET'])
def health():
    return jsonify({"ok": True}), 200


@app.route('/api/csrf', methods=['GET'])
def csrf_token():
    return jsonify({"csrf_token": _ensure_csrf_token()}), 200


@app.route('/api/status', methods=['GET'])
def status():
    return jsonify(interceptor.status()), 200


@app.route('/api/rules', methods=['GET'])
def rules():
    return jsonify(
        {
            "block_rules": [r.to_dict() for r in interceptor.block_rules()],
            "redirect_rules": [r.to_dict() for r in interceptor.redirect_rules()],
        }
    ), 200


@app.route('/api/refresh', methods=['POST'])
def refresh():
    outcome = interceptor.refresh()
    return jsonify({"ok": outcome.ok, "result": outcome.message}), 200


@app.route('/api/options', methods=['GET'])
def options():
    lock = interceptor.lock_state()
    return jsonify(
        {
            "config_url": interceptor.effective_config_url(),
            "managed": interceptor.managed,
            "lock_status": lock.status,
            "unlocked": (not lock.locked) or _session_unlocked(),
        }
    ), 200


@app.route('/api/options', methods=['POST'])
def options_save():
    if interceptor.managed:
        return jsonify({"ok": False, "error": "Configuration is managed by an administrator."}), 409
    if _options_locked():
        return jsonify({"ok": False, "error": "Options are locked."}), 403

    url = str(_payload().get('config_url') or '').strip()
    if urlparse(url).scheme not in ('http', 'https'):
        return jsonify({"ok": False, "error": "Only http/https URLs are supported."}), 400

    interceptor.set_config_url(url)
    try:
        outcome = interceptor.refresh()
    except Exception as e:
        logger.exception("Refresh after saving config URL failed")
        return jsonify({"ok": False, "error": public_error_message(e)}), 500
    return jsonify({"ok": True, "result": outcome.message}), 200


@app.route('/api/options', methods=['DELETE'])
def options_remove():
    if interceptor.managed:
        return jsonify({"ok": False, "error": "Configuration is managed by an administrator."}), 409
    if _options_locked():
        return jsonify({"ok": False, "error": "Options are locked."}), 403

    interceptor.remove_config_url()
    session.pop('options_unlocked', None)
    return jsonify({"ok": True}), 200


@app.route('/api/unlock', methods=['POST'])
def unlock():
    password = str(_payload().get('password') or '')
    valid = interceptor.verify_password(password)
    if valid:
        session['options_unlocked'] = True
    return jsonify({"valid": valid}), 200


@app.route('/api/navigate', methods=['POST'])
def navigate():
    data = _payload()
    try:
        tab_id = int(data.get('tab_id'))
    except (TypeError, ValueError):
        return jsonify({"ok": False, "error": "tab_id must be an integer."}), 400
    url = str(data.get('url') or '').strip()
    nav_status = str(data.get('status') or LOADING).strip().lower()

    event = interceptor.tabs.observe(tab_id, url, nav_status)
    if event is None:
        return jsonify({"event": False, "blocked": False, "redirect": None}), 200

    future = dispatcher.submit(event)
    try:
        decision: NavigationDecision = future.result(timeout=_config.nav_timeout_seconds)
    except concurrent.futures.TimeoutError:
        logger.warning("Navigation resolution timed out for tab %s", tab_id)
        decision = NavigationDecision(url=url)
    return jsonify({"event": True, **decision.to_dict()}), 200
