from datetime import date, datetime, time

from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user
from sqlalchemy import func

from pondok.decorators import role_required, staff_required
from pondok.errors import NotFound, ValidationFailed
from pondok.extensions import db
from pondok.forms import AnnouncementForm, parse_form
from pondok.models import (
    Announcement, Bill, BillPayment, ClassRoom, DonationCampaign, CampaignStatus,
    HafalanProgress, InstitutionType, Registration, RegistrationStatus, Student,
    StudentStatus, User, UserRole, VerificationStatus,
)
from pondok.services.billing_service import OPEN_STATUSES
from pondok.utils.announcements import get_announcements_for_user, mark_announcements_as_read

main_bp = Blueprint('main', __name__)


@main_bp.route('/health')
def health():
    db.session.execute(db.text('SELECT 1'))
    return jsonify({'status': 'ok', 'timestamp': datetime.utcnow().isoformat()})


@main_bp.route('/api/dashboard/stats')
@login_required
@staff_required
def dashboard_stats():
    today_start = datetime.combine(date.today(), time.min)

    by_institution = dict(
        (row[0].name, row[1]) for row in db.session.query(Student.institution_type, func.count(Student.id))
        .filter(Student.status == StudentStatus.ACTIVE, Student.is_deleted.is_(False))
        .group_by(Student.institution_type).all()
    )
    outstanding = db.session.query(func.sum(Bill.remaining_amount)) \
        .filter(Bill.status.in_(OPEN_STATUSES)).scalar() or 0
    overdue_count = Bill.query.filter(Bill.is_overdue.is_(True), Bill.status.in_(OPEN_STATUSES)).count()
    collected_today = db.session.query(func.sum(BillPayment.amount)).filter(
        BillPayment.verification_status == VerificationStatus.VERIFIED,
        BillPayment.payment_date >= today_start,
    ).scalar() or 0
    pending_payments = BillPayment.query.filter_by(verification_status=VerificationStatus.PENDING).count()
    pending_ppdb = Registration.query.filter(Registration.status.in_([
        RegistrationStatus.SUBMITTED, RegistrationStatus.DOCUMENT_CHECK,
    ])).count()
    hafalan = db.session.query(
        func.avg(HafalanProgress.total_ayat), func.avg(HafalanProgress.overall_progress),
    ).filter(HafalanProgress.is_deleted.is_(False)).one()

    return jsonify({
        'students': {
            'total_active': sum(by_institution.values()),
            'by_institution': {level.name: by_institution.get(level.name, 0) for level in InstitutionType},
        },
        'billing': {
            'outstanding_total': float(outstanding),
            'overdue_bills': overdue_count,
            'collected_today': float(collected_today),
            'pending_verifications': pending_payments,
        },
        'ppdb': {'pending': pending_ppdb},
        'hafalan': {
            'average_ayat': round(float(hafalan[0] or 0), 2),
            'average_progress': round(float(hafalan[1] or 0), 2),
        },
    })


@main_bp.route('/api/public/statistics')
def public_statistics():
    rows = db.session.query(Student.institution_type, func.count(Student.id)) \
        .filter(Student.status == StudentStatus.ACTIVE, Student.is_deleted.is_(False)) \
        .group_by(Student.institution_type).all()
    per_institution = {level.name: 0 for level in InstitutionType}
    per_institution.update({row[0].name: row[1] for row in rows})

    total_ayat = db.session.query(func.sum(HafalanProgress.total_ayat)) \
        .filter(HafalanProgress.is_deleted.is_(False)).scalar() or 0

    return jsonify({
        'students': per_institution,
        'total_students': sum(per_institution.values()),
        'total_hafalan_ayat': int(total_ayat),
        'active_campaigns': DonationCampaign.query.filter_by(status=CampaignStatus.ACTIVE).count(),
    })


# ==========================================
# PENGUMUMAN
# ==========================================
@main_bp.route('/api/announcements', methods=['POST'])
@login_required
@role_required(UserRole.ADMIN, UserRole.TU, UserRole.GURU)
def create_announcement():
    form = parse_form(AnnouncementForm)
    scope = form.target_scope.data or 'ALL'

    if scope == 'ROLE' and not form.target_role.data:
        raise ValidationFailed('Role sasaran wajib diisi')
    if scope == 'CLASS':
        if not form.target_class_id.data:
            raise ValidationFailed('Kelas sasaran wajib diisi')
        if not db.session.get(ClassRoom, form.target_class_id.data):
            raise NotFound('Kelas tidak ditemukan')
    if scope == 'USER':
        if not form.target_user_id.data:
            raise ValidationFailed('User sasaran wajib diisi')
        if not db.session.get(User, form.target_user_id.data):
            raise NotFound('User tidak ditemukan')

    announcement = Announcement(
        user_id=current_user.id,
        title=form.title.data,
        content=form.content.data,
        target_scope=scope,
        target_role=form.target_role.data if scope == 'ROLE' else None,
        target_class_id=form.target_class_id.data if scope == 'CLASS' else None,
        target_user_id=form.target_user_id.data if scope == 'USER' else None,
    )
    announcement.save()
    return jsonify({'message': 'Pengumuman berhasil diterbitkan', 'announcement': announcement.to_dict()}), 201


@main_bp.route('/api/announcements')
@login_required
def list_announcements():
    limit = request.args.get('limit', type=int)
    announcements, items, unread_count = get_announcements_for_user(current_user, limit=limit)
    if request.args.get('mark_read') == 'true':
        mark_announcements_as_read(current_user, announcements)
    return jsonify({'announcements': items, 'unread_count': unread_count})
