"""Status normalizer mapping patent-office status vocabularies to unified codes."""

from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from ..models.legal_status import UnifiedStatusCode

S = UnifiedStatusCode

# Per-office vocabularies. Adding a jurisdiction only means adding a table here.
JURISDICTION_STATUS_TABLES: Mapping[str, Mapping[str, UnifiedStatusCode]] = MappingProxyType({
    "CN": MappingProxyType({
        "申请": S.FILED,
        "公开": S.PUBLISHED,
        "实质审查": S.UNDER_EXAMINATION,
        "授权": S.GRANTED,
        "失效": S.LAPSED,
        "撤回": S.WITHDRAWN,
        "驳回": S.REJECTED,
        "届满": S.EXPIRED,
        "无效": S.REVOKED,
        "复审": S.UNDER_APPEAL,
        "转让": S.TRANSFERRED,
        "许可备案": S.LICENSE_RECORDED,
    }),
    "US": MappingProxyType({
        "FILED": S.FILED,
        "PUBLISHED": S.PUBLISHED,
        "UNDER_EXAMINATION": S.UNDER_EXAMINATION,
        "PATENTED": S.GRANTED,
        "LAPSED": S.LAPSED,
        "WITHDRAWN": S.WITHDRAWN,
        "ABANDONED": S.WITHDRAWN,
        "REJECTED": S.REJECTED,
        "EXPIRED": S.EXPIRED,
        "REVOKED": S.REVOKED,
        "ON_APPEAL": S.UNDER_APPEAL,
        "REASSIGNED": S.TRANSFERRED,
        "LICENSE_RECORDED": S.LICENSE_RECORDED,
    }),
    "EP": MappingProxyType({
        "FILING": S.FILED,
        "PUBLICATION": S.PUBLISHED,
        "EXAMINATION": S.UNDER_EXAMINATION,
        "GRANT": S.GRANTED,
        "LAPSE": S.LAPSED,
        "WITHDRAWAL": S.WITHDRAWN,
        "REFUSAL": S.REJECTED,
        "EXPIRY": S.EXPIRED,
        "REVOCATION": S.REVOKED,
        "APPEAL": S.UNDER_APPEAL,
        "TRANSFER": S.TRANSFERRED,
        "LICENCE": S.LICENSE_RECORDED,
    }),
    "JP": MappingProxyType({
        "出願": S.FILED,
        "公開": S.PUBLISHED,
        "審査中": S.UNDER_EXAMINATION,
        "登録": S.GRANTED,
        "消滅": S.LAPSED,
        "取下": S.WITHDRAWN,
        "拒絶": S.REJECTED,
        "満了": S.EXPIRED,
        "無効": S.REVOKED,
        "審判": S.UNDER_APPEAL,
        "移転": S.TRANSFERRED,
        "実施権": S.LICENSE_RECORDED,
    }),
    "KR": MappingProxyType({
        "출원": S.FILED,
        "공개": S.PUBLISHED,
        "심사중": S.UNDER_EXAMINATION,
        "등록": S.GRANTED,
        "소멸": S.LAPSED,
        "취하": S.WITHDRAWN,
        "거절": S.REJECTED,
        "만료": S.EXPIRED,
        "무효": S.REVOKED,
        "심판": S.UNDER_APPEAL,
        "이전": S.TRANSFERRED,
        "실시권": S.LICENSE_RECORDED,
    }),
})

FALLBACK_STATUS = UnifiedStatusCode.FILED


class StatusCodeMapper:
    """Maps (jurisdiction, raw status) pairs onto unified status codes.

    The lookup tables are read-only and shared by reference; the mapper never
    raises. Unknown jurisdictions and unmapped strings resolve to
    ``(FILED, False)``, so callers that care about the difference must check
    the returned flag.
    """

    def __init__(self, tables: Optional[Mapping[str, Mapping[str, UnifiedStatusCode]]] = None):
        self.tables = tables if tables is not None else JURISDICTION_STATUS_TABLES

    def map(self, jurisdiction: Optional[str], raw_status: Optional[str]) -> Tuple[UnifiedStatusCode, bool]:
        """Translate an office-specific status string into a unified code."""
        table = self.tables.get(jurisdiction or "")
        if table is not None and raw_status:
            code = table.get(raw_status)
            if code is not None:
                return code, True
        return FALLBACK_STATUS, False

    def map_code(self, jurisdiction: Optional[str], raw_status: Optional[str]) -> UnifiedStatusCode:
        """Translate a status string, ignoring whether the match was exact."""
        code, _ = self.map(jurisdiction, raw_status)
        return code


default_mapper = StatusCodeMapper()


def map_jurisdiction_status(jurisdiction: Optional[str], raw_status: Optional[str]) -> Tuple[UnifiedStatusCode, bool]:
    """Map a status with the default jurisdiction tables."""
    return default_mapper.map(jurisdiction, raw_status)
