import logging
import re
import time
from datetime import date, datetime

from sqlalchemy import func

from pondok.errors import ValidationFailed, NotFound
from pondok.extensions import db
from pondok.models import (
    Donation, DonationCampaign, DonationCategory, CampaignStatus, VerificationStatus,
)

logger = logging.getLogger(__name__)


def slugify(text):
    slug = re.sub(r'[^a-z0-9]+', '-', (text or '').lower()).strip('-')
    return slug or 'program'


class DonationService:
    @staticmethod
    def next_donation_no(now=None):
        now = now or datetime.utcnow()
        prefix = f'DON-{now.strftime("%Y%m")}-'
        last = db.session.query(Donation.donation_no) \
            .filter(Donation.donation_no.like(f'{prefix}%')) \
            .execution_options(include_deleted=True) \
            .order_by(Donation.donation_no.desc()).first()
        sequence = int(last[0][len(prefix):]) + 1 if last else 1
        return f'{prefix}{sequence:04d}'

    @staticmethod
    def create_donation(form, ip_address=None, today=None):
        today = today or date.today()
        is_anonymous = bool(form.is_anonymous.data)
        if not is_anonymous and (not form.donor_name.data or not form.donor_email.data):
            raise ValidationFailed('Nama dan email donatur harus diisi jika tidak anonim')

        campaign = None
        if form.campaign_id.data:
            campaign = db.session.get(DonationCampaign, form.campaign_id.data)
            if not campaign:
                raise NotFound('Program donasi tidak ditemukan')
            if campaign.status != CampaignStatus.ACTIVE:
                raise ValidationFailed('Program donasi tidak aktif')
            if campaign.end_date and today > campaign.end_date:
                raise ValidationFailed('Program donasi sudah berakhir')

        category = db.session.get(DonationCategory, form.category_id.data)
        if not category or not category.is_active:
            raise ValidationFailed('Kategori tidak valid')

        donation = Donation(
            donation_no=DonationService.next_donation_no(),
            campaign_id=campaign.id if campaign else None,
            category_id=category.id,
            amount=form.amount.data,
            message=form.message.data or None,
            donor_name=None if is_anonymous else form.donor_name.data,
            donor_email=None if is_anonymous else form.donor_email.data,
            donor_phone=None if is_anonymous else (form.donor_phone.data or None),
            is_anonymous=is_anonymous,
            payment_method=form.payment_method.data,
            payment_channel=form.payment_channel.data or None,
            payment_status=VerificationStatus.PENDING,
            ip_address=ip_address,
        )
        donation.save()
        logger.info("Donasi %s dibuat (%s)", donation.donation_no, donation.amount)
        return donation

    @staticmethod
    def apply_verification(donation, user_id=None, paid_at=None):
        """Tandai donasi terverifikasi (commit oleh pemanggil)."""
        now = datetime.utcnow()
        donation.payment_status = VerificationStatus.VERIFIED
        donation.verified_by = user_id
        donation.verified_at = now
        donation.paid_at = paid_at or now
        if donation.campaign:
            donation.campaign.current_amount = (donation.campaign.current_amount or 0) + donation.amount
        donation.certificate_no = f'CERT-{donation.donation_no}-{int(time.time() * 1000)}'
        return donation

    @staticmethod
    def verify(donation_id, user):
        donation = db.session.get(Donation, donation_id)
        if not donation:
            raise NotFound('Donasi tidak ditemukan')
        if donation.payment_status == VerificationStatus.VERIFIED:
            raise ValidationFailed('Donasi sudah terverifikasi')

        try:
            DonationService.apply_verification(donation, user.id)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info("Donasi %s diverifikasi oleh user %s", donation.donation_no, user.id)
        return donation

    @staticmethod
    def create_campaign(form, user):
        slug = form.slug.data or slugify(form.title.data)
        base, counter = slug, 2
        while DonationCampaign.query.execution_options(include_deleted=True).filter_by(slug=slug).first():
            slug = f'{base}-{counter}'
            counter += 1

        if form.start_date.data and form.end_date.data and form.end_date.data < form.start_date.data:
            raise ValidationFailed('Tanggal selesai harus setelah tanggal mulai')

        campaign = DonationCampaign(
            slug=slug,
            title=form.title.data,
            description=form.description.data or None,
            category_id=form.category_id.data,
            target_amount=form.target_amount.data,
            start_date=form.start_date.data,
            end_date=form.end_date.data,
            status=CampaignStatus[form.status.data] if form.status.data else CampaignStatus.DRAFT,
            created_by=user.id,
        )
        campaign.save()
        return campaign

    @staticmethod
    def summary(start=None, end=None):
        query = Donation.query.filter(Donation.payment_status == VerificationStatus.VERIFIED)
        if start:
            query = query.filter(Donation.paid_at >= start)
        if end:
            query = query.filter(Donation.paid_at <= end)
        donations = query.all()

        by_category, by_month = {}, {}
        for donation in donations:
            name = donation.category.name if donation.category else '-'
            row = by_category.setdefault(name, {'count': 0, 'amount': 0})
            row['count'] += 1
            row['amount'] += donation.amount
            month = (donation.paid_at or donation.created_at).strftime('%Y-%m')
            by_month[month] = by_month.get(month, 0) + donation.amount

        pending = db.session.query(func.count(Donation.id), func.sum(Donation.amount)) \
            .filter(Donation.payment_status == VerificationStatus.PENDING).one()

        return {
            'total_donations': len(donations),
            'total_amount': sum(d.amount for d in donations),
            'average_amount': round(sum(d.amount for d in donations) / len(donations), 2) if donations else 0,
            'unique_donors': len({d.donor_email for d in donations if d.donor_email}),
            'anonymous_count': sum(1 for d in donations if d.is_anonymous),
            'pending_count': pending[0] or 0,
            'pending_amount': pending[1] or 0,
            'by_category': by_category,
            'by_month': dict(sorted(by_month.items())),
            'active_campaigns': DonationCampaign.query.filter_by(status=CampaignStatus.ACTIVE).count(),
        }
