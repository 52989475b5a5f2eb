import logging
from datetime import datetime

from flask import Blueprint, jsonify, request
from flask_login import login_user, logout_user, current_user, login_required
from flask_wtf.csrf import generate_csrf
from sqlalchemy import or_

from pondok.errors import Conflict, ServiceError, ValidationFailed
from pondok.extensions import db
from pondok.forms import LoginForm, ChangePasswordForm, parse_form
from pondok.models import User, Teacher, Parent, Student
from pondok.utils.phone import phone_variants
from pondok.utils.roles import role_label

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__)

# Endpoint yang tetap boleh diakses walau password belum diganti
PASSWORD_CHANGE_ALLOWED = {
    'auth.change_password', 'auth.logout', 'auth.me', 'auth.csrf_token', 'static',
}


def _resolve_user_for_login(login_id):
    identifier = (login_id or '').strip()
    if not identifier:
        return None, False

    # 1) Prioritas: username/email langsung pada tabel users
    direct_user = User.query.filter(
        or_(User.email == identifier, User.username == identifier)
    ).first()
    if direct_user:
        return direct_user, False

    # 2) Fallback: cari dari identifier profil lintas role
    candidate_ids = set()

    variants = phone_variants(identifier) or [identifier]
    parent_rows = db.session.query(Parent.user_id).filter(Parent.phone.in_(variants)).all()
    candidate_ids.update(row[0] for row in parent_rows if row[0])

    teacher_rows = db.session.query(Teacher.user_id).filter(
        or_(Teacher.nip == identifier, Teacher.phone.in_(variants))
    ).all()
    candidate_ids.update(row[0] for row in teacher_rows if row[0])

    student_rows = db.session.query(Student.user_id).filter(
        or_(Student.nis == identifier, Student.nisn == identifier)
    ).all()
    candidate_ids.update(row[0] for row in student_rows if row[0])

    if not candidate_ids:
        return None, False

    if len(candidate_ids) > 1:
        return None, True

    return db.session.get(User, next(iter(candidate_ids))), False


# --- THE BOUNCER (SATPAM) ---
@auth_bp.before_app_request
def check_force_password_change():
    """
    Jika user login DAN statusnya 'must_change_password' == True,
    semua API lain dijawab 403 sampai password diganti.
    """
    if current_user.is_authenticated and current_user.must_change_password:
        if request.endpoint and request.endpoint not in PASSWORD_CHANGE_ALLOWED:
            return jsonify({
                'error': 'Demi keamanan, Anda wajib mengganti password default sebelum melanjutkan.',
                'must_change_password': True,
            }), 403


# --- ROUTE LOGIN ----
@auth_bp.route('/login', methods=['POST'])
def login():
    form = parse_form(LoginForm)
    user, is_ambiguous = _resolve_user_for_login(form.login_id.data)

    if is_ambiguous:
        raise Conflict('Login gagal: identifier terhubung ke lebih dari satu akun. Hubungi admin untuk sinkronisasi data.')

    if not user or not user.check_password(form.password.data):
        logger.info("Login gagal untuk %s", form.login_id.data)
        raise ServiceError('Login gagal. Cek kembali Username/Email/NIS/NIP/No HP dan password.', 401)

    login_user(user, remember=form.remember.data)
    user.last_login = datetime.utcnow()
    db.session.commit()

    data = user.to_dict()
    data['role_label'] = role_label(user.role)
    return jsonify({'message': 'Login berhasil', 'user': data, 'must_change_password': bool(user.must_change_password)})


@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'message': 'Anda telah logout.'})


@auth_bp.route('/me')
@login_required
def me():
    data = current_user.to_dict()
    data['role_label'] = role_label(current_user.role)
    return jsonify({'user': data})


@auth_bp.route('/csrf-token')
def csrf_token():
    return jsonify({'csrf_token': generate_csrf()})


# --- ROUTE GANTI PASSWORD ---
@auth_bp.route('/change-password', methods=['POST'])
@login_required
def change_password():
    form = parse_form(ChangePasswordForm)

    if not current_user.check_password(form.old_password.data):
        raise ValidationFailed('Password lama salah!')
    if form.old_password.data == form.new_password.data:
        raise ValidationFailed('Password baru tidak boleh sama dengan password lama')

    current_user.set_password(form.new_password.data)
    current_user.must_change_password = False
    db.session.commit()
    logger.info("User %s mengganti password", current_user.username)
    return jsonify({'message': 'Password berhasil diperbarui!'})
