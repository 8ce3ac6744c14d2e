from expense_desk.utils.sanitization import (
    UNKNOWN_VENDOR,
    VENDOR_MAX_LENGTH,
    clean_vendor_name,
    sanitize_string,
)


def test_sanitize_string_strips_markup_and_scripts():
    assert sanitize_string("  <b>Taxi</b> ") == "bTaxi/b"
    assert sanitize_string("javascript:alert(1)") == "alert(1)"
    assert sanitize_string('img onerror=x') == "img x"
    assert sanitize_string("a\x00b\x07c") == "abc"
    assert sanitize_string(None) is None


def test_clean_vendor_name_blank_is_unknown():
    assert clean_vendor_name(None) == UNKNOWN_VENDOR
    assert clean_vendor_name("   ") == UNKNOWN_VENDOR
    assert clean_vendor_name("***") == UNKNOWN_VENDOR


def test_clean_vendor_name_filters_and_truncates():
    assert clean_vendor_name("  Café & Té, S.L. ") == "Café  Té S.L."
    assert clean_vendor_name("Renfe-Viajeros") == "Renfe-Viajeros"
    assert len(clean_vendor_name("x" * 300)) == VENDOR_MAX_LENGTH
