"""
메시지 파서

Gmail API의 메시지 응답(헤더 + MIME 트리)을 내부 메일 레코드로 정규화합니다.
"""

import base64
import binascii
import html
import re
from datetime import datetime, timezone
from email.errors import HeaderParseError
from email.header import decode_header, make_header
from email.utils import getaddresses, parsedate_to_datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from ..domain.entities import (
    Attachment,
    Email,
    EmailAddress,
    GmailLabel,
    ParsedMessage,
    utcnow,
)
from ..domain.errors import ParseError

_CATEGORY_NAMES = {
    GmailLabel.CATEGORY_PERSONAL: "primary",
    GmailLabel.CATEGORY_SOCIAL: "social",
    GmailLabel.CATEGORY_PROMOTIONS: "promotions",
    GmailLabel.CATEGORY_UPDATES: "updates",
    GmailLabel.CATEGORY_FORUMS: "forums",
}

_TAG_RE = re.compile(r"<[^>]+>")
_BLOCK_RE = re.compile(r"(?is)<(script|style)\b.*?</\1>")
_SPACE_RE = re.compile(r"[ \t\r\f\v]+")


def parse_message(wire: Dict[str, Any]) -> ParsedMessage:
    """
    Gmail 메시지 응답을 파싱합니다.

    Args:
        wire: messages.get(format=full) 응답

    Returns:
        파싱된 메시지. MIME 트리가 없으면 본문이 빈 메시지를 반환합니다.

    Raises:
        ParseError: 메시지 ID, internalDate, payload 형식이 잘못된 경우
    """
    if not isinstance(wire, dict) or not wire.get("id"):
        raise ParseError("메시지 ID가 없습니다")

    message_id = str(wire["id"])
    payload = wire.get("payload") or {}
    if not isinstance(payload, dict):
        raise ParseError(f"payload 형식이 잘못되었습니다: {message_id}")

    raw_headers = payload.get("headers") or []
    if not isinstance(raw_headers, list):
        raise ParseError(f"헤더 형식이 잘못되었습니다: {message_id}")

    headers = _header_map(raw_headers)
    received_at = _received_at(message_id, wire.get("internalDate"), headers.get("date"))

    parsed = ParsedMessage(
        id=message_id,
        thread_id=wire.get("threadId") or "",
        label_ids=list(wire.get("labelIds") or []),
        snippet=html.unescape(wire.get("snippet") or ""),
        history_id=str(wire["historyId"]) if wire.get("historyId") else None,
        internal_date=received_at,
        size_estimate=int(wire.get("sizeEstimate") or 0),
        subject=_decode_words(headers.get("subject", "")),
        date_header=headers.get("date"),
        message_id_header=headers.get("message-id"),
    )

    from_list = parse_address_list(headers.get("from", ""))
    if from_list:
        parsed.from_address = from_list[0]
    parsed.to = parse_address_list(headers.get("to", ""))
    parsed.cc = parse_address_list(headers.get("cc", ""))
    parsed.bcc = parse_address_list(headers.get("bcc", ""))

    if payload:
        _walk_part(payload, parsed)

    return parsed


def to_email(parsed: ParsedMessage, account_id: UUID) -> Email:
    """파싱된 메시지를 저장용 메일 엔티티로 변환합니다."""
    return Email(
        account_id=account_id,
        provider_message_id=parsed.id,
        thread_id=parsed.thread_id,
        from_email=parsed.from_address.email,
        from_name=parsed.from_address.name,
        to_addresses=[address.email for address in parsed.to],
        cc_addresses=[address.email for address in parsed.cc],
        subject=parsed.subject,
        body_text=parsed.body_text,
        body_html=parsed.body_html,
        snippet=parsed.snippet,
        received_at=parsed.internal_date,
        labels=list(parsed.label_ids),
        is_read=parsed.is_read,
        has_attachments=parsed.has_attachments,
        attachments=list(parsed.attachments),
    )


def extract_label_state(wire: Dict[str, Any]) -> Tuple[List[str], bool]:
    """메시지 응답에서 (라벨 목록, 읽음 여부)만 추출합니다."""
    labels = list(wire.get("labelIds") or [])
    return labels, GmailLabel.UNREAD not in labels


def parse_address_list(value: str) -> List[EmailAddress]:
    """주소 헤더를 파싱합니다. 표준 파싱에 실패하면 수동 파싱으로 대체합니다."""
    if not value:
        return []

    addresses: List[EmailAddress] = []
    for name, address in getaddresses([value]):
        if not address or "@" not in address:
            continue
        addresses.append(EmailAddress(name=_decode_words(name), email=address.lower()))

    if addresses:
        return addresses

    return [address for address in (_parse_address_manual(chunk) for chunk in value.split(",")) if address]


def _parse_address_manual(value: str) -> Optional[EmailAddress]:
    """'이름 <주소>' 형식을 직접 파싱"""
    value = value.strip()
    if not value:
        return None

    start = value.rfind("<")
    end = value.rfind(">")
    if start != -1 and end > start:
        name = value[:start].strip().strip('"')
        address = value[start + 1:end].strip()
        return EmailAddress(name=_decode_words(name), email=address.lower())

    return EmailAddress(email=value.lower())


def _header_map(raw_headers: List[Dict[str, Any]]) -> Dict[str, str]:
    """헤더 목록을 소문자 이름 기준 맵으로 변환 (첫 번째 값 우선)"""
    headers: Dict[str, str] = {}
    for header in raw_headers:
        if not isinstance(header, dict):
            continue
        name = (header.get("name") or "").lower()
        if name and name not in headers:
            headers[name] = header.get("value") or ""
    return headers


def _received_at(message_id: str, internal_date: Any, date_header: Optional[str]) -> datetime:
    """수신 시간 계산 (internalDate 밀리초 우선, 다음은 Date 헤더)"""
    if internal_date not in (None, ""):
        try:
            millis = int(internal_date)
        except (TypeError, ValueError):
            raise ParseError(f"internalDate 형식이 잘못되었습니다: {message_id}")
        return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).replace(tzinfo=None)

    if date_header:
        try:
            parsed = parsedate_to_datetime(date_header)
        except (TypeError, ValueError):
            parsed = None
        if parsed is not None:
            if parsed.tzinfo is not None:
                parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
            return parsed

    return utcnow()


def _walk_part(part: Dict[str, Any], parsed: ParsedMessage) -> None:
    """MIME 트리를 재귀적으로 순회 (같은 종류의 본문은 첫 번째 것만 사용)"""
    mime_type = (part.get("mimeType") or "").lower()
    filename = part.get("filename") or ""
    body = part.get("body") or {}

    if filename and body.get("attachmentId"):
        parsed.attachments.append(
            Attachment(
                filename=filename,
                mime_type=mime_type or "application/octet-stream",
                size=int(body.get("size") or 0),
                attachment_id=body.get("attachmentId"),
            )
        )
        return

    children = part.get("parts") or []
    if mime_type.startswith("multipart/") or children:
        for child in children:
            if isinstance(child, dict):
                _walk_part(child, parsed)
        return

    if mime_type == "text/plain" and not parsed.body_text:
        parsed.body_text = _decode_body(body.get("data"))
    elif mime_type == "text/html" and not parsed.body_html:
        parsed.body_html = _decode_body(body.get("data"))


def _decode_body(data: Optional[str]) -> str:
    """base64url 본문 디코딩 (실패 시 빈 문자열)"""
    if not data:
        return ""
    padded = data + "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        return ""


def _decode_words(value: str) -> str:
    """RFC 2047 인코딩된 헤더 값 디코딩"""
    if not value or "=?" not in value:
        return value
    try:
        return str(make_header(decode_header(value)))
    except (HeaderParseError, LookupError, UnicodeDecodeError):
        return value


def get_category(labels: List[str]) -> str:
    """Gmail 카테고리 라벨을 카테고리 이름으로 변환 (없으면 primary)"""
    for label in labels:
        if label in _CATEGORY_NAMES:
            return _CATEGORY_NAMES[label]
    return "primary"


def extract_plain_text(parsed: ParsedMessage) -> str:
    """텍스트 본문 반환. HTML만 있으면 태그를 제거한 텍스트를 반환합니다."""
    if parsed.body_text:
        return parsed.body_text
    if not parsed.body_html:
        return ""

    text = _BLOCK_RE.sub("", parsed.body_html)
    text = re.sub(r"(?i)<br\s*/?>|</p>|</div>", "\n", text)
    text = html.unescape(_TAG_RE.sub("", text))
    lines = [_SPACE_RE.sub(" ", line).strip() for line in text.splitlines()]
    return "\n".join(line for line in lines if line)
