import pytest

from lvmpv.usage.size import from_human_size, to_giga_units


@pytest.mark.parametrize(
    "size, expected",
    [
        ("123456 TiB", 123456000),
        ("1 GiB", 1),
        ("1 MB", 0),
        ("104.5 GB", 104),
    ],
)
def test_to_giga_units(size, expected):
    assert to_giga_units(size) == expected


def test_one_megabyte_is_not_one_gigabyte():
    result = to_giga_units("1 MB")
    assert result == 0
    assert result != 1


def test_from_human_size_without_unit():
    assert from_human_size("32") == 32


def test_from_human_size_kilobytes():
    assert from_human_size("32kb") == 32000


def test_from_human_size_case_insensitive():
    assert from_human_size("1 gb") == from_human_size("1 GB")


@pytest.mark.parametrize("size", ["", "abc", "1 XB", "-1 GB", "1.2.3 GB", "1  GB"])
def test_invalid_sizes_raise(size):
    with pytest.raises(ValueError):
        to_giga_units(size)