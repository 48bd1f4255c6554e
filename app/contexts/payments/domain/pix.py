"""PIX "copia e cola" payloads (BR Code, EMV merchant-presented mode).

The payload is a flat sequence of tag-length-value fields closed by a CRC16
field (tag 63). Field order, truncation rules and the checksum must match
what banking apps expect, otherwise the scanned code is refused.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import List, Tuple

from app.ui_strings import pix_key_type_label


logger = logging.getLogger(__name__)

PIX_GUI = "br.gov.bcb.pix"
DEFAULT_REFERENCE = "COTIZ"
DEFAULT_MERCHANT_CITY = "BRASIL"
CRC_PLACEHOLDER = "6304"
MAX_FIELD_LENGTH = 99
MAX_NAME_LENGTH = 25
MAX_REFERENCE_LENGTH = 25

_CENTS = Decimal("0.01")
_KEY_STRIP_PATTERN = re.compile(r"[^\w@.+-]", re.ASCII)
_REFERENCE_STRIP_PATTERN = re.compile(r"[^A-Za-z0-9]")

_CPF_PATTERN = re.compile(r"(\d{3})(\d{3})(\d{3})(\d{2})", re.ASCII)
_CNPJ_PATTERN = re.compile(r"(\d{2})(\d{3})(\d{3})(\d{4})(\d{2})", re.ASCII)
_EMAIL_PATTERN = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")
_PHONE_PATTERN = re.compile(r"(\+55)?\d{10,11}", re.ASCII)
_RANDOM_KEY_PATTERN = re.compile(
    r"[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}",
    re.IGNORECASE,
)


class PixPayloadError(ValueError):
    """Raised when a PIX payload cannot be assembled or parsed."""


@dataclass(frozen=True)
class PixCode:
    payload: str
    degraded: bool = False
    error: str | None = None


@dataclass(frozen=True)
class PixKeyInfo:
    display: str
    key_type: str

    @property
    def label(self) -> str:
        return pix_key_type_label(self.key_type)


def format_field(tag: str, value: str) -> str:
    return f"{tag}{len(value):02d}{value}"


def _checked_field(tag: str, value: str) -> str:
    if len(value) > MAX_FIELD_LENGTH:
        raise PixPayloadError(f"campo {tag} excede {MAX_FIELD_LENGTH} caracteres")
    return format_field(tag, value)


def crc16_ccitt(data: str | bytes) -> str:
    """CRC-16/CCITT-FALSE: poly 0x1021, init 0xFFFF, MSB first, no reflection."""
    raw = data.encode("utf-8") if isinstance(data, str) else bytes(data)
    crc = 0xFFFF
    for byte in raw:
        crc ^= byte << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ 0x1021) & 0xFFFF
            else:
                crc = (crc << 1) & 0xFFFF
    return f"{crc:04X}"


def clean_pix_key(pix_key: str | None) -> str:
    return _KEY_STRIP_PATTERN.sub("", str(pix_key or ""))


def format_amount(amount) -> str:
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise PixPayloadError(f"valor invalido: {amount!r}") from exc
    if not value.is_finite() or value <= 0:
        raise PixPayloadError(f"valor invalido: {amount!r}")
    try:
        quantized = value.quantize(_CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise PixPayloadError(f"valor invalido: {amount!r}") from exc
    if quantized <= 0:
        raise PixPayloadError(f"valor abaixo de um centavo: {amount!r}")
    return f"{quantized:f}"


def normalize_merchant_name(name: str | None) -> str:
    upper = str(name or "")[:MAX_NAME_LENGTH].upper()
    decomposed = unicodedata.normalize("NFD", upper)
    # Letters without an ASCII base (º, Ø) are dropped; "ß" upper-cases to "SS".
    ascii_only = "".join(ch for ch in decomposed if ch.isascii() and not unicodedata.combining(ch))
    return ascii_only[:MAX_NAME_LENGTH]


def normalize_reference(description: str | None, default: str = DEFAULT_REFERENCE) -> str:
    return _REFERENCE_STRIP_PATTERN.sub("", (description or default)[:MAX_REFERENCE_LENGTH])


def generate_pix_payload(
    pix_key: str,
    amount,
    recipient_name: str,
    description: str | None = None,
    *,
    merchant_city: str = DEFAULT_MERCHANT_CITY,
    default_reference: str = DEFAULT_REFERENCE,
) -> str:
    clean_key = clean_pix_key(pix_key)
    if not clean_key:
        raise PixPayloadError("chave PIX vazia")

    merchant_account_info = _checked_field(
        "26",
        format_field("00", PIX_GUI) + _checked_field("01", clean_key),
    )
    additional_data = _checked_field(
        "62",
        format_field("05", normalize_reference(description, default_reference)),
    )

    payload_without_crc = "".join(
        [
            format_field("00", "01"),
            # 12: single-use code with a fixed amount.
            format_field("01", "12"),
            merchant_account_info,
            format_field("52", "0000"),
            format_field("53", "986"),
            _checked_field("54", format_amount(amount)),
            format_field("58", "BR"),
            _checked_field("59", normalize_merchant_name(recipient_name)),
            _checked_field("60", str(merchant_city or DEFAULT_MERCHANT_CITY)),
            additional_data,
            CRC_PLACEHOLDER,
        ]
    )
    crc = crc16_ccitt(payload_without_crc)
    return payload_without_crc[: -len(CRC_PLACEHOLDER)] + format_field("63", crc)


def build_copy_paste_code(
    pix_key: str,
    amount,
    recipient_name: str,
    description: str | None = None,
    *,
    merchant_city: str = DEFAULT_MERCHANT_CITY,
    default_reference: str = DEFAULT_REFERENCE,
) -> PixCode:
    """Return the full payload, or the bare cleaned key when assembly fails.

    The bare key is still accepted by banking apps as a copy-and-paste key,
    only without the embedded amount.
    """
    try:
        payload = generate_pix_payload(
            pix_key,
            amount,
            recipient_name,
            description,
            merchant_city=merchant_city,
            default_reference=default_reference,
        )
    except Exception as exc:
        logger.warning(
            "pix_payload_fallback",
            extra={"error": str(exc), "error_type": type(exc).__name__},
        )
        return PixCode(payload=clean_pix_key(pix_key), degraded=True, error=str(exc))
    return PixCode(payload=payload)


def parse_pix_payload(payload: str) -> List[Tuple[str, str]]:
    text = str(payload or "")
    fields: List[Tuple[str, str]] = []
    index = 0
    while index < len(text):
        tag = text[index : index + 2]
        length_raw = text[index + 2 : index + 4]
        if len(tag) != 2 or len(length_raw) != 2 or not (length_raw.isascii() and length_raw.isdigit()):
            raise PixPayloadError(f"campo malformado na posicao {index}")
        length = int(length_raw)
        value = text[index + 4 : index + 4 + length]
        if len(value) != length:
            raise PixPayloadError(f"campo {tag} truncado")
        fields.append((tag, value))
        index += 4 + length
    return fields


def validate_pix_payload(payload: str) -> bool:
    text = str(payload or "")
    if len(text) < 8 or text[-8:-4] != CRC_PLACEHOLDER:
        return False
    try:
        fields = parse_pix_payload(text)
    except PixPayloadError:
        return False
    if not fields or fields[0] != ("00", "01") or fields[-1][0] != "63":
        return False
    return crc16_ccitt(text[:-4]) == text[-4:].upper()


def classify_pix_key(pix_key: str | None) -> PixKeyInfo:
    raw = str(pix_key or "")
    clean_key = clean_pix_key(raw)

    if re.fullmatch(r"\d{11}", clean_key, re.ASCII):
        return PixKeyInfo(display=_CPF_PATTERN.sub(r"\1.\2.\3-\4", clean_key), key_type="cpf")
    if re.fullmatch(r"\d{14}", clean_key, re.ASCII):
        return PixKeyInfo(display=_CNPJ_PATTERN.sub(r"\1.\2.\3/\4-\5", clean_key), key_type="cnpj")
    if _EMAIL_PATTERN.fullmatch(clean_key):
        return PixKeyInfo(display=raw, key_type="email")
    if _PHONE_PATTERN.fullmatch(clean_key):
        return PixKeyInfo(display=_format_phone(clean_key), key_type="phone")
    if _RANDOM_KEY_PATTERN.fullmatch(clean_key):
        return PixKeyInfo(display=raw, key_type="random")
    return PixKeyInfo(display=raw, key_type="generic")


def _format_phone(clean_key: str) -> str:
    phone = clean_key[3:] if clean_key.startswith("+55") else clean_key
    if len(phone) == 11:
        return f"({phone[:2]}) {phone[2:7]}-{phone[7:]}"
    return f"({phone[:2]}) {phone[2:6]}-{phone[6:]}"
