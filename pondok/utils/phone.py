import re


def normalize_phone(phone):
    """08xx / +628xx / 8xx -> 628xx (format WhatsApp)."""
    digits = re.sub(r'\D', '', phone or '')
    if not digits:
        return ''
    if digits.startswith('0'):
        return '62' + digits[1:]
    if digits.startswith('8'):
        return '62' + digits
    return digits


def phone_variants(phone):
    """Semua bentuk nomor yang mungkin tersimpan (08.., 628.., +628..)."""
    normalized = normalize_phone(phone)
    if not normalized:
        return []
    variants = {phone.strip(), normalized, '+' + normalized}
    if normalized.startswith('62'):
        variants.add('0' + normalized[2:])
    return sorted(v for v in variants if v)
