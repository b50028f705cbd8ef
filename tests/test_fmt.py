import pytest

from xvfs.fmt import cprintf_format, printf_format


def test_plain_text_passes_through():
    assert printf_format("hello\n") == "hello\n"
    assert cprintf_format("hello\n") == "hello\n"


def test_string_argument():
    assert printf_format("a %s b", "xyz") == "a xyz b"
    assert cprintf_format("a %s b", "xyz") == "a xyz b"


def test_null_string():
    assert printf_format("%s", None) == "(null)"
    assert cprintf_format("%s", None) == "(null)"


def test_percent_escape():
    assert printf_format("100%%") == "100%"
    assert cprintf_format("100%%") == "100%"


def test_unknown_sequence_kept():
    assert printf_format("%q") == "%q"
    assert cprintf_format("%q") == "%q"


def test_trailing_percent_dropped():
    assert printf_format("abc%") == "abc"
    assert cprintf_format("abc%") == "abc"


@pytest.mark.parametrize("n", [0, 1, 255, 4096, 123456789])
def test_hex_round_trip(n):
    upper = printf_format("%x", n)
    assert int(upper, 16) == n
    assert upper == cprintf_format("%x", n).upper()
    assert printf_format("%p", n) == upper


def test_hex_case_differs():
    assert cprintf_format("%x", 0xABC) == "abc"
    assert printf_format("%x", 0xABC) == "ABC"


@pytest.mark.parametrize("n", [0, 7, -7, 2**31 - 1, -(2**31)])
def test_decimal_round_trip(n):
    assert int(printf_format("%d", n)) == n
    assert int(cprintf_format("%d", n)) == n


def test_hex_is_unsigned_32_bit():
    assert printf_format("%x", -1) == printf_format("%x", 2**32 - 1)
    assert printf_format("%x", -1) == "FFFFFFFF"


def test_decimal_wraps_to_signed_32_bit():
    assert printf_format("%d", 2**31) == printf_format("%d", -(2**31))


def test_char_argument():
    assert printf_format("%c", ord("A")) == "A"
    assert printf_format("%c%c", "h", "i") == "hi"


def test_console_has_no_char_conversion():
    assert cprintf_format("%c%s", "x") == "%cx"


def test_console_null_format():
    with pytest.raises(ValueError):
        cprintf_format(None)


def test_missing_argument():
    with pytest.raises(TypeError):
        printf_format("%d %d", 1)