import click

from pondok.extensions import db


def register_commands(app):
    @app.cli.command('seed-quran')
    def seed_quran():
        """Isi tabel referensi 114 surat."""
        from pondok.data.quran import seed_surahs
        created = seed_surahs(db.session)
        click.echo(f"📖 {created} surat ditambahkan")

    @app.cli.command('generate-monthly-bills')
    def generate_monthly_bills():
        """Terbitkan tagihan bulanan (sama dengan endpoint cron)."""
        from pondok.services.billing_service import BillingService
        result = BillingService.generate_monthly_bills()
        click.echo(f"🧾 Periode {result['period']}: {result['bills_generated']} tagihan diterbitkan")
        for row in result['results']:
            click.echo(f"   - {row['bill_type']}: {row['status']} ({row['generated']})")

    @app.cli.command('send-notifications')
    @click.option('--limit', default=50, show_default=True, help='Jumlah pesan maksimal')
    def send_notifications(limit):
        """Kirim antrian pesan WhatsApp."""
        from pondok.services.notification_service import NotificationService
        result = NotificationService.send_pending(limit=limit)
        click.echo(f"📨 Terkirim: {result['sent']}, Gagal: {result['failed']}")

    @app.cli.command('ota-monthly-reset')
    def ota_monthly_reset():
        """Buat laporan OTA bulan lalu dan reset progres bulanan."""
        from pondok.services.ota_service import OTAService
        result = OTAService.monthly_reset()
        status = 'dibuat' if result['report_generated'] else 'sudah ada'
        click.echo(f"🤝 Laporan {result['previous_month']} {status}, "
                   f"{result['total_programs_reset']} program direset")
