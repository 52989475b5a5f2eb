from datetime import date, datetime, time

from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user

from pondok.decorators import staff_required
from pondok.errors import NotFound, ValidationFailed
from pondok.extensions import db
from pondok.forms import DonationForm, CampaignForm, parse_form
from pondok.models import (
    Donation, DonationCampaign, DonationCategory, CampaignStatus, VerificationStatus,
)
from pondok.routes.payments import client_ip
from pondok.services.donation_service import DonationService
from pondok.utils.pagination import paginate, page_meta
from pondok.utils.roles import is_staff

donations_bp = Blueprint('donations', __name__)

RECENT_DONATIONS = 10


@donations_bp.route('/categories')
def categories():
    items = DonationCategory.query.filter_by(is_active=True).order_by(DonationCategory.name).all()
    return jsonify({'categories': [c.to_dict() for c in items]})


# ==========================================
# PROGRAM DONASI
# ==========================================
@donations_bp.route('/campaigns', methods=['GET'])
def list_campaigns():
    query = DonationCampaign.query
    status = request.args.get('status')
    if status:
        try:
            query = query.filter(DonationCampaign.status == CampaignStatus[status])
        except KeyError:
            raise ValidationFailed('Status program tidak valid')
    elif not (current_user.is_authenticated and is_staff(current_user)):
        # Publik hanya melihat program yang sedang berjalan
        query = query.filter(DonationCampaign.status == CampaignStatus.ACTIVE)

    category_id = request.args.get('category_id', type=int)
    if category_id:
        query = query.filter(DonationCampaign.category_id == category_id)

    campaigns = query.order_by(DonationCampaign.created_at.desc()).all()
    return jsonify({'campaigns': [c.to_dict() for c in campaigns]})


@donations_bp.route('/campaigns', methods=['POST'])
@login_required
@staff_required
def create_campaign():
    form = parse_form(CampaignForm)
    if form.category_id.data and not db.session.get(DonationCategory, form.category_id.data):
        raise NotFound('Kategori tidak ditemukan')
    campaign = DonationService.create_campaign(form, current_user)
    return jsonify({'message': 'Program donasi dibuat', 'campaign': campaign.to_dict()}), 201


@donations_bp.route('/campaigns/<slug>')
def campaign_detail(slug):
    campaign = DonationCampaign.query.filter_by(slug=slug).first()
    if not campaign:
        raise NotFound('Program donasi tidak ditemukan')

    recent = Donation.query.filter_by(campaign_id=campaign.id, payment_status=VerificationStatus.VERIFIED) \
        .order_by(Donation.paid_at.desc(), Donation.id.desc()).limit(RECENT_DONATIONS).all()
    donor_count = Donation.query.filter_by(
        campaign_id=campaign.id, payment_status=VerificationStatus.VERIFIED,
    ).count()

    data = campaign.to_dict()
    data['donor_count'] = donor_count
    data['days_left'] = max(0, (campaign.end_date - date.today()).days) if campaign.end_date else None
    return jsonify({
        'campaign': data,
        'recent_donations': [d.to_dict(public=True) for d in recent],
    })


# ==========================================
# DONASI
# ==========================================
@donations_bp.route('/create', methods=['POST'])
def create_donation():
    form = parse_form(DonationForm)
    donation = DonationService.create_donation(form, ip_address=client_ip())
    return jsonify({
        'message': 'Donasi tercatat, silakan selesaikan pembayaran',
        'donation': donation.to_dict(),
    }), 201


@donations_bp.route('/list')
@login_required
@staff_required
def list_donations():
    query = Donation.query
    status = request.args.get('status')
    if status:
        try:
            query = query.filter(Donation.payment_status == VerificationStatus[status])
        except KeyError:
            raise ValidationFailed('Status pembayaran tidak valid')
    campaign_id = request.args.get('campaign_id', type=int)
    if campaign_id:
        query = query.filter(Donation.campaign_id == campaign_id)

    pagination = paginate(query.order_by(Donation.created_at.desc(), Donation.id.desc()))
    return jsonify({
        'donations': [d.to_dict() for d in pagination.items],
        'pagination': page_meta(pagination),
    })


@donations_bp.route('/<int:donation_id>/verify', methods=['POST'])
@login_required
@staff_required
def verify_donation(donation_id):
    donation = DonationService.verify(donation_id, current_user)
    return jsonify({
        'message': 'Donasi terverifikasi',
        'donation': donation.to_dict(),
        'campaign': donation.campaign.to_dict() if donation.campaign else None,
    })


@donations_bp.route('/reports/summary')
@login_required
@staff_required
def summary():
    start = end = None
    try:
        if request.args.get('start_date'):
            start = datetime.combine(date.fromisoformat(request.args['start_date']), time.min)
        if request.args.get('end_date'):
            end = datetime.combine(date.fromisoformat(request.args['end_date']), time.max)
    except ValueError:
        raise ValidationFailed('Format tanggal harus YYYY-MM-DD')
    return jsonify(DonationService.summary(start=start, end=end))
