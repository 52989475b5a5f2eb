import logging

from flask import Blueprint, current_app, jsonify, request
from flask_login import login_required

from pondok.decorators import admin_required
from pondok.errors import NotFound, ValidationFailed
from pondok.extensions import csrf
from pondok.forms import ErrorReportForm, parse_form
from pondok.utils.error_log import TIME_RANGES

logger = logging.getLogger(__name__)

analytics_bp = Blueprint('analytics', __name__)

MAX_LIMIT = 500


def _buffer():
    return current_app.extensions['error_log']


def _serialize(entry):
    data = dict(entry)
    data['timestamp'] = entry['timestamp'].isoformat()
    if entry.get('resolved_at'):
        data['resolved_at'] = entry['resolved_at'].isoformat()
    return data


@analytics_bp.route('/errors', methods=['POST'])
@csrf.exempt
def report_error():
    form = parse_form(ErrorReportForm)
    entry = _buffer().add({
        'message': form.message.data,
        'level': form.level.data or 'error',
        'stack': form.stack.data or None,
        'url': form.url.data or None,
        'user_agent': form.user_agent.data or request.headers.get('User-Agent'),
        'component': form.component.data or None,
        'ip_address': request.remote_addr,
    })
    if entry['level'] == 'error':
        logger.error("Client error [%s] %s (%s)", entry['component'] or '-', entry['message'], entry['url'] or '-')
    return jsonify({'status': 'ok', 'id': entry['id']}), 201


@analytics_bp.route('/errors', methods=['GET'])
@login_required
@admin_required
def list_errors():
    time_range = request.args.get('range', '24h')
    if time_range not in TIME_RANGES:
        raise ValidationFailed('Range waktu tidak valid (1h, 24h, 7d, 30d)')

    resolved = request.args.get('resolved')
    if resolved is not None:
        resolved = resolved.lower() == 'true'

    limit = max(1, min(request.args.get('limit', 100, type=int), MAX_LIMIT))
    items, matched = _buffer().query(
        time_range=time_range,
        level=request.args.get('level'),
        resolved=resolved,
        limit=limit,
    )
    return jsonify({
        'errors': [_serialize(e) for e in items],
        'summary': _buffer().summarize(matched),
        'range': time_range,
    })


@analytics_bp.route('/errors/<int:error_id>', methods=['PATCH'])
@login_required
@admin_required
def resolve_error(error_id):
    entry = _buffer().resolve(error_id)
    if not entry:
        raise NotFound('Laporan error tidak ditemukan')
    return jsonify({'message': 'Ditandai selesai', 'error': _serialize(entry)})
