from scanner.correlation.fingerprint import compute_fingerprint, normalize_message, normalize_path
from scanner.models import Category, Location


def _fp(rule="B307", path="src/app.py", start=12, end=12, message="Use of eval", category=Category.SAST):
    return compute_fingerprint(category, rule, Location(path=path, start_line=start, end_line=end), message)


def test_fingerprint_is_stable_hex():
    fp = _fp()

    assert fp == _fp()
    assert len(fp) == 64
    int(fp, 16)


def test_cosmetic_differences_do_not_change_fingerprint():
    assert _fp(rule="b307") == _fp(rule="B307")
    assert _fp(path="./src/app.py") == _fp(path="src/app.py")
    assert _fp(path="src\\app.py") == _fp(path="src/app.py")
    assert _fp(message="  Use   of\nEVAL ") == _fp(message="Use of eval")


def test_identity_fields_change_fingerprint():
    base = _fp()

    assert _fp(start=13, end=13) != base
    assert _fp(path="src/other.py") != base
    assert _fp(message="Use of exec") != base
    assert _fp(category=Category.SECRET) != base


def test_missing_lines_differ_from_line_one():
    assert _fp(start=None, end=None) != _fp(start=1, end=1)


def test_normalizers():
    assert normalize_path("") == "."
    assert normalize_path("././a/b.py") == "a/b.py"
    assert normalize_message(None) == ""
    assert normalize_message("A\tB  C") == "a b c"
