import logging

from flask import Flask, jsonify
from sqlalchemy import event
from sqlalchemy.orm import with_loader_criteria
from werkzeug.exceptions import HTTPException

from config import Config
from pondok.extensions import db, migrate, login_manager, csrf
from pondok.errors import ServiceError
from pondok.utils.error_log import ErrorLogBuffer
from pondok.utils.rate_limiter import RateLimiter

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

logger = logging.getLogger(__name__)


def _setup_logging(app):
    level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger('pondok').setLevel(level)


def _add_soft_delete_filter(execute_state):
    if not execute_state.is_select or execute_state.is_column_load:
        return
    if execute_state.execution_options.get("include_deleted", False):
        return
    from pondok.models import BaseModel
    execute_state.statement = execute_state.statement.options(
        with_loader_criteria(
            BaseModel,
            lambda cls: cls.is_deleted.is_(False),
            include_aliases=True,
        )
    )


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)
    app.json.sort_keys = False

    _setup_logging(app)

    # 1. Init Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)

    # State in-memory per proses (rate limit webhook & log error client)
    app.extensions['webhook_limiter'] = RateLimiter(app.config['WEBHOOK_RATE_LIMIT'], app.config['WEBHOOK_RATE_WINDOW'])
    app.extensions['error_log'] = ErrorLogBuffer(app.config['ERROR_LOG_CAPACITY'])

    # 2. Import Models (Penting agar db.create_all mendeteksi tabel)
    from pondok import models

    # 3. User Loader (Wajib untuk Flask-Login)
    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(models.User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Silakan login terlebih dahulu'}), 401

    # 4. Global Soft Delete Filter (hindari data is_deleted muncul tanpa sengaja)
    if not event.contains(db.session, "do_orm_execute", _add_soft_delete_filter):
        event.listen(db.session, "do_orm_execute", _add_soft_delete_filter)

    # 5. Error handler (semua respon dalam bentuk JSON)
    @app.errorhandler(ServiceError)
    def handle_service_error(error):
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'error': error.description}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        db.session.rollback()
        logger.exception("Unhandled error: %s", error)
        return jsonify({'error': 'Internal server error'}), 500

    # 6. Registrasi Blueprint
    from pondok.routes.auth import auth_bp
    from pondok.routes.main import main_bp
    from pondok.routes.students import students_bp
    from pondok.routes.academic import academic_bp
    from pondok.routes.hafalan import hafalan_bp
    from pondok.routes.billing import billing_bp
    from pondok.routes.payments import payments_bp
    from pondok.routes.ppdb import ppdb_bp
    from pondok.routes.donations import donations_bp
    from pondok.routes.ota import ota_bp
    from pondok.routes.parent import parent_bp
    from pondok.routes.analytics import analytics_bp
    from pondok.routes.webhooks import webhooks_bp

    app.register_blueprint(auth_bp, url_prefix='/auth')
    app.register_blueprint(main_bp)
    app.register_blueprint(students_bp, url_prefix='/api/students')
    app.register_blueprint(academic_bp, url_prefix='/api/academic')
    app.register_blueprint(hafalan_bp, url_prefix='/api/hafalan')
    app.register_blueprint(billing_bp, url_prefix='/api/billing')
    app.register_blueprint(payments_bp, url_prefix='/api/payments')
    app.register_blueprint(ppdb_bp, url_prefix='/api/ppdb')
    app.register_blueprint(donations_bp, url_prefix='/api/donations')
    app.register_blueprint(ota_bp, url_prefix='/api/ota')
    app.register_blueprint(parent_bp, url_prefix='/api/parent')
    app.register_blueprint(analytics_bp, url_prefix='/api/analytics')
    app.register_blueprint(webhooks_bp, url_prefix='/api')

    # 7. CLI
    from pondok.commands import register_commands
    register_commands(app)

    return app
