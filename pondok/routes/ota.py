from flask import Blueprint, jsonify, request
from flask_login import login_required

from pondok.decorators import staff_required, cron_required
from pondok.errors import NotFound, ValidationFailed
from pondok.extensions import csrf, db
from pondok.forms import OTASponsorForm, parse_form, request_payload
from pondok.models import OTAProgram, OTASponsor, OTAReport, Student
from pondok.services.ota_service import OTAService

ota_bp = Blueprint('ota', __name__)


@ota_bp.route('/public')
def public_programs():
    programs = OTAService.public_programs()
    return jsonify({
        'month': OTAService.current_month(),
        'programs': programs,
        'total_programs': len(programs),
    })


@ota_bp.route('/sponsors', methods=['POST'])
def pledge():
    form = parse_form(OTASponsorForm)
    sponsor = OTAService.pledge(form)
    return jsonify({
        'message': 'Jazakumullah khairan, komitmen donasi OTA tercatat',
        'sponsor': sponsor.to_dict(),
    }), 201


@ota_bp.route('/sponsors', methods=['GET'])
@login_required
@staff_required
def list_sponsors():
    query = OTASponsor.query
    month = request.args.get('month')
    if month:
        query = query.filter(OTASponsor.month == month)
    program_id = request.args.get('program_id', type=int)
    if program_id:
        query = query.filter(OTASponsor.program_id == program_id)
    if request.args.get('is_paid') in ('true', 'false'):
        query = query.filter(OTASponsor.is_paid.is_(request.args['is_paid'] == 'true'))

    sponsors = query.order_by(OTASponsor.month.desc(), OTASponsor.id).all()
    items = []
    for sponsor in sponsors:
        data = sponsor.to_dict()
        data['donor_email'] = sponsor.donor_email
        data['donor_phone'] = sponsor.donor_phone
        items.append(data)
    return jsonify({'sponsors': items})


@ota_bp.route('/sponsors/<int:sponsor_id>/paid', methods=['POST'])
@login_required
@staff_required
def mark_paid(sponsor_id):
    sponsor = OTAService.mark_paid(sponsor_id)
    program = sponsor.program
    return jsonify({
        'message': 'Donasi OTA ditandai lunas',
        'sponsor': sponsor.to_dict(),
        'program': {
            'id': program.id,
            'current_month': program.current_month,
            'monthly_target': program.monthly_target,
            'monthly_progress': program.monthly_progress,
        },
    })


@ota_bp.route('/programs', methods=['POST'])
@login_required
@staff_required
def create_program():
    payload = request_payload()
    student_id = payload.get('student_id')
    monthly_target = payload.get('monthly_target')
    if not isinstance(student_id, int) or not db.session.get(Student, student_id):
        raise NotFound('Santri tidak ditemukan')
    if isinstance(monthly_target, bool) or not isinstance(monthly_target, (int, float)) or monthly_target <= 0:
        raise ValidationFailed('Target bulanan harus lebih dari 0')

    program = OTAProgram(
        student_id=student_id,
        description=payload.get('description'),
        monthly_target=monthly_target,
        current_month=OTAService.current_month(),
        monthly_progress=0,
        months_completed=0,
        is_active=True,
    )
    program.save()
    return jsonify({'message': 'Program OTA dibuat', 'program_id': program.id}), 201


@ota_bp.route('/reports')
@login_required
@staff_required
def reports():
    query = OTAReport.query.filter_by(report_type='MONTHLY')
    year = request.args.get('year')
    if year:
        query = query.filter(OTAReport.year == year)
    items = query.order_by(OTAReport.month.desc()).all()
    return jsonify({'reports': [r.to_dict() for r in items]})


@ota_bp.route('/cron/monthly-reset', methods=['POST'])
@csrf.exempt
@cron_required
def cron_monthly_reset():
    result = OTAService.monthly_reset()
    return jsonify({'message': 'Reset bulanan OTA selesai', **result})
