from __future__ import annotations

from cifan.types import Language

REMEDIATION_HINT = {
    "th": "กรุณาติดต่อฝ่ายสนับสนุน หรือตรวจสอบสิทธิ์การเข้าถึงระบบจัดเก็บข้อมูล",
    "en": "Please contact support or check the backend access rules.",
}

PERMISSION_CODES = {"storage-unauthorized", "database-unauthorized"}

ERROR_MESSAGES: dict[str, dict[str, str]] = {
    "missing-user-id": {
        "th": "กรุณาเข้าสู่ระบบก่อนส่งใบสมัคร",
        "en": "User authentication required. Please sign in and try again.",
    },
    "missing-film-file": {"th": "กรุณาอัปโหลดไฟล์ภาพยนตร์", "en": "Film file is required"},
    "missing-poster-file": {"th": "กรุณาอัปโหลดไฟล์โปสเตอร์", "en": "Poster file is required"},
    "missing-proof-file": {"th": "กรุณาอัปโหลดเอกสารยืนยัน", "en": "Proof file is required"},
    "invalid-film-file": {"th": "ไฟล์ภาพยนตร์ไม่ถูกต้อง", "en": "Film file validation failed"},
    "invalid-poster-file": {"th": "ไฟล์โปสเตอร์ไม่ถูกต้อง", "en": "Poster file validation failed"},
    "invalid-proof-file": {"th": "เอกสารยืนยันไม่ถูกต้อง", "en": "Proof file validation failed"},
    "invalid-form": {"th": "ข้อมูลในแบบฟอร์มไม่ครบถ้วน", "en": "The form contains invalid fields"},
    "upload-failed": {"th": "อัปโหลดไฟล์ไม่สำเร็จ กรุณาลองใหม่", "en": "File upload failed. Please retry."},
    "storage-unauthorized": {
        "th": "ไม่มีสิทธิ์เขียนไฟล์ลงระบบจัดเก็บ",
        "en": "File storage permission error.",
    },
    "database-unauthorized": {
        "th": "ไม่มีสิทธิ์บันทึกข้อมูลลงฐานข้อมูล",
        "en": "Database permission error.",
    },
    "database-error": {"th": "บันทึกข้อมูลไม่สำเร็จ", "en": "Failed to save the application."},
    "unknown-error": {"th": "เกิดข้อผิดพลาดที่ไม่ทราบสาเหตุ", "en": "Unknown error occurred"},
}

VALIDATION_MESSAGES: dict[str, dict[str, str]] = {
    "required": {"th": "กรุณากรอกข้อมูลนี้", "en": "This field is required"},
    "invalid_email": {"th": "รูปแบบอีเมลไม่ถูกต้อง", "en": "Please enter a valid email address"},
    "format_required": {"th": "กรุณาเลือกรูปแบบภาพยนตร์", "en": "Please select film format"},
    "invalid_age": {
        "th": "อายุต้องอยู่ระหว่าง {min}-{max} ปี",
        "en": "Age must be between {min}-{max} years",
    },
    "invalid_duration": {"th": "กรุณาระบุความยาวภาพยนตร์", "en": "Film duration must be specified"},
    "all_agreements_required": {
        "th": "กรุณายอมรับข้อตกลงทั้งหมด",
        "en": "Please accept all terms and conditions",
    },
}

STATUS_LABELS: dict[str, dict[str, str]] = {
    "draft": {"th": "ฉบับร่าง", "en": "Draft"},
    "submitted": {"th": "ส่งแล้ว", "en": "Submitted"},
    "withdrawn": {"th": "ถอนใบสมัคร", "en": "Withdrawn"},
    "deleted": {"th": "ลบแล้ว", "en": "Deleted"},
}

CATEGORY_LABELS: dict[str, dict[str, str]] = {
    "youth": {"th": "เยาวชน", "en": "Youth Fantastic Short Film Award"},
    "future": {"th": "อนาคต", "en": "Future Fantastic Short Film Award"},
    "world": {"th": "โลก", "en": "World Fantastic Short Film Award"},
}


def error_message(code: str | None, lang: Language, fallback: str = "") -> str:
    entry = ERROR_MESSAGES.get(code or "")
    message = entry[lang] if entry else (fallback or ERROR_MESSAGES["unknown-error"][lang])
    if code in PERMISSION_CODES:
        message = f"{message} {REMEDIATION_HINT[lang]}"
    return message


def validation_message(key: str, lang: Language, **params: object) -> str:
    return VALIDATION_MESSAGES[key][lang].format(**params)


def label(table: dict[str, dict[str, str]], key: str, lang: Language) -> str:
    entry = table.get(key)
    return entry[lang] if entry else key


def failure_message(code: str | None, lang: Language, detail: str = "", detail_code: str | None = None) -> str:
    """User-facing text for a failed save or submit.

    English keeps the specific detail; Thai uses the table entry and falls back
    to the detail only for codes the table does not cover.
    """
    if lang == "en" and detail:
        message = detail
    else:
        entry = ERROR_MESSAGES.get(code or "")
        message = entry[lang] if entry else (detail or ERROR_MESSAGES["unknown-error"][lang])
    if code in PERMISSION_CODES or detail_code in PERMISSION_CODES:
        message = f"{message} {REMEDIATION_HINT[lang]}"
    return message
