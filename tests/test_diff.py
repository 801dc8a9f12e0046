import pytest
from docbridge import TextDiff, code_point_offset, diff_text, utf8_offset


def check_diff(a, b):
    diff = diff_text(a, b)
    assert 0 <= diff.start <= diff.end_a <= len(a)
    assert diff.start <= diff.end_b <= len(b)
    assert a[: diff.start] == b[: diff.start]
    assert a[diff.end_a :] == b[diff.end_b :]
    assert diff.is_empty == (a == b)
    # applying the diff turns a into b
    assert a[: diff.start] + b[diff.start : diff.end_b] + a[diff.end_a :] == b
    return diff


def test_replace_word():
    assert diff_text("hello world", "hello earth") == TextDiff(6, 11, 11)


def test_replace_middle_line():
    assert diff_text("a\nb\nc", "a\nx\nc") == TextDiff(2, 3, 3)


def test_equal():
    diff = diff_text("same", "same")
    assert diff == TextDiff(4, 4, 4)
    assert diff.is_empty


def test_empty():
    assert diff_text("", "") == TextDiff(0, 0, 0)
    assert diff_text("", "abc") == TextDiff(0, 0, 3)
    assert diff_text("abc", "") == TextDiff(0, 3, 0)


def test_suffix_does_not_cross_prefix():
    # "aa" -> "aaa": the common suffix must stop at the common prefix
    diff = diff_text("aa", "aaa")
    assert diff == TextDiff(2, 2, 3)
    diff = diff_text("aaa", "aa")
    assert diff == TextDiff(2, 3, 2)


@pytest.mark.parametrize(
    "a,b",
    [
        ("abc", "abxc"),
        ("abcabc", "abc"),
        ("xyz", "abc"),
        ("line\n", "line\nline\n"),
        ("héllo", "hèllo"),
        ("a\r\nb", "a\nb"),
    ],
)
def test_properties(a, b):
    check_diff(a, b)
    check_diff(b, a)


def test_code_point_granularity():
    # "e" followed by a combining acute accent, vs "e" followed by a combining grave accent
    diff = check_diff("e\u0301", "e\u0300")
    # the boundary falls inside the grapheme cluster
    assert diff.start == 1


def test_utf8_offsets():
    text = "aé😀b"
    assert [utf8_offset(text, index) for index in range(5)] == [0, 1, 3, 7, 8]
    assert [code_point_offset(text, offset) for offset in (0, 1, 3, 7, 8)] == [0, 1, 2, 3, 4]
    # inside a multi-byte character
    assert code_point_offset(text, 2) == 1
    assert code_point_offset(text, 5) == 2
    assert utf8_offset(text, 100) == 8
