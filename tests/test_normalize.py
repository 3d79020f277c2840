"""Tests for cross-catalog name normalization."""

from discoverfm.data.models import Artist
from discoverfm.data.normalize import normalize_name


def test_case_and_whitespace():
    assert normalize_name("  Radiohead  ") == "radiohead"
    assert normalize_name("Karma   Police") == "karma police"


def test_punctuation_removed():
    assert normalize_name("HUMBLE.") == "humble"
    assert normalize_name("Don't Stop") == "don t stop"


def test_ampersand_becomes_and():
    assert normalize_name("Simon & Garfunkel") == normalize_name("Simon and Garfunkel")


def test_diacritics_kept():
    assert normalize_name("Múm") == "múm"
    assert normalize_name("Múm") != normalize_name("Mum")


def test_unicode_casefold():
    assert normalize_name("STRASSE") == normalize_name("straße")


def test_punctuation_only_name_not_empty():
    """Artists like '!!!' must not collapse to the empty string."""
    assert normalize_name("!!!") == "!!!"


def test_empty():
    assert normalize_name("") == ""
    assert normalize_name(None) == ""


def test_artist_identity_uses_normalized_name():
    assert Artist("The National") == Artist("the national ")
    assert len({Artist("Bon Iver"), Artist("BON IVER"), Artist("Bon Iver.")}) == 1
    assert str(Artist("Bon Iver")) == "Bon Iver"
