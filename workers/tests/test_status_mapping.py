import pytest

from legal_status.models.legal_status import UnifiedStatusCode
from legal_status.utils.normalizer import (
    FALLBACK_STATUS,
    JURISDICTION_STATUS_TABLES,
    StatusCodeMapper,
    map_jurisdiction_status,
)


class TestStatusCodeMapper:
    """Test jurisdiction status normalization."""

    @pytest.fixture
    def mapper(self):
        return StatusCodeMapper()

    @pytest.mark.parametrize("jurisdiction,raw,expected", [
        ("CN", "授权", UnifiedStatusCode.GRANTED),
        ("CN", "实质审查", UnifiedStatusCode.UNDER_EXAMINATION),
        ("CN", "许可备案", UnifiedStatusCode.LICENSE_RECORDED),
        ("US", "PATENTED", UnifiedStatusCode.GRANTED),
        ("US", "ABANDONED", UnifiedStatusCode.WITHDRAWN),
        ("US", "ON_APPEAL", UnifiedStatusCode.UNDER_APPEAL),
        ("EP", "GRANT", UnifiedStatusCode.GRANTED),
        ("EP", "REFUSAL", UnifiedStatusCode.REJECTED),
        ("JP", "登録", UnifiedStatusCode.GRANTED),
        ("JP", "消滅", UnifiedStatusCode.LAPSED),
        ("KR", "등록", UnifiedStatusCode.GRANTED),
        ("KR", "심판", UnifiedStatusCode.UNDER_APPEAL),
    ])
    def test_exact_matches(self, mapper, jurisdiction, raw, expected):
        """Test known office vocabulary maps exactly."""
        code, exact = mapper.map(jurisdiction, raw)

        assert code == expected
        assert exact is True

    def test_lookup_is_exact(self, mapper):
        """Test case and whitespace variants are not recognised."""
        assert mapper.map("us", "PATENTED") == (FALLBACK_STATUS, False)
        assert mapper.map("US", " PATENTED ") == (FALLBACK_STATUS, False)
        assert mapper.map(" EP", "GRANT") == (FALLBACK_STATUS, False)
        assert mapper.map("US", "patented") == (FALLBACK_STATUS, False)

    def test_unknown_jurisdiction_falls_back(self, mapper):
        """Test unknown offices resolve to the fallback without raising."""
        assert mapper.map("WO", "GRANT") == (FALLBACK_STATUS, False)
        assert FALLBACK_STATUS == UnifiedStatusCode.FILED

    def test_unmapped_status_falls_back(self, mapper):
        """Test unknown status strings resolve to the fallback."""
        assert mapper.map("US", "SOMETHING_NEW") == (UnifiedStatusCode.FILED, False)
        assert mapper.map("CN", "") == (UnifiedStatusCode.FILED, False)
        assert mapper.map(None, None) == (UnifiedStatusCode.FILED, False)

    def test_status_vocabularies_are_not_shared_across_offices(self, mapper):
        """Test one office's status string is not recognised by another office."""
        assert mapper.map("EP", "PATENTED") == (UnifiedStatusCode.FILED, False)

    def test_every_table_covers_every_unified_code(self):
        """Test each jurisdiction can express every unified status."""
        assert set(JURISDICTION_STATUS_TABLES) == {"CN", "US", "EP", "JP", "KR"}
        for table in JURISDICTION_STATUS_TABLES.values():
            assert set(table.values()) == set(UnifiedStatusCode)

    def test_tables_are_read_only(self):
        """Test the shared tables cannot be mutated."""
        with pytest.raises(TypeError):
            JURISDICTION_STATUS_TABLES["CN"]["新状态"] = UnifiedStatusCode.GRANTED
        with pytest.raises(TypeError):
            JURISDICTION_STATUS_TABLES["XX"] = {}

    def test_custom_tables(self):
        """Test a mapper can be given its own vocabulary."""
        mapper = StatusCodeMapper({"GB": {"GRANTED": UnifiedStatusCode.GRANTED}})

        assert mapper.map_code("GB", "GRANTED") == UnifiedStatusCode.GRANTED
        assert mapper.map_code("US", "PATENTED") == UnifiedStatusCode.FILED

    def test_module_level_helper(self):
        """Test the default mapper shortcut."""
        assert map_jurisdiction_status("KR", "만료") == (UnifiedStatusCode.EXPIRED, True)


class TestUnifiedStatusCode:
    """Test unified status classification."""

    def test_terminal_codes(self):
        terminal = {code for code in UnifiedStatusCode if code.is_terminal}

        assert terminal == {
            UnifiedStatusCode.LAPSED,
            UnifiedStatusCode.WITHDRAWN,
            UnifiedStatusCode.REJECTED,
            UnifiedStatusCode.EXPIRED,
            UnifiedStatusCode.REVOKED,
        }

    def test_active_is_complement_of_terminal(self):
        for code in UnifiedStatusCode:
            assert code.is_active != code.is_terminal
