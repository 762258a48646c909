"""Tests for threshold secret sharing."""

import itertools

import pytest

from sealtree.shamir import Share, combine, split

SECRET = bytes(range(32))


@pytest.mark.parametrize("threshold,count", [(2, 2), (2, 3), (3, 5)])
def test_any_threshold_subset_recovers(threshold, count):
    shares = split(SECRET, threshold, count)
    assert len(shares) == count
    for subset in itertools.combinations(shares, threshold):
        assert combine(list(subset)) == SECRET


def test_more_than_threshold_also_recovers():
    shares = split(SECRET, 2, 4)
    assert combine(shares) == SECRET


def test_too_few_shares_do_not_recover():
    shares = split(SECRET, 3, 3)
    assert combine(shares[:2]) != SECRET


def test_shares_do_not_contain_secret():
    for share in split(SECRET, 2, 3):
        assert share.y != SECRET
        assert len(share.y) == len(SECRET)


def test_share_order_does_not_matter():
    shares = split(SECRET, 3, 4)
    assert combine([shares[3], shares[0], shares[2]]) == SECRET


@pytest.mark.parametrize("threshold,count", [(1, 3), (4, 3), (2, 256)])
def test_split_rejects_bad_parameters(threshold, count):
    with pytest.raises(ValueError):
        split(SECRET, threshold, count)


def test_split_rejects_empty_secret():
    with pytest.raises(ValueError):
        split(b"", 2, 2)


def test_combine_rejects_duplicates_and_mismatches():
    shares = split(SECRET, 2, 3)
    with pytest.raises(ValueError, match="Duplicate"):
        combine([shares[0], shares[0]])
    with pytest.raises(ValueError, match="lengths"):
        combine([shares[0], Share(x=2, y=b"short")])
    with pytest.raises(ValueError):
        combine([])


def test_share_bytes_round_trip():
    share = split(SECRET, 2, 2)[1]
    assert Share.from_bytes(share.to_bytes()) == share
    assert share.to_bytes()[0] == 2


@pytest.mark.parametrize("raw", [b"", b"\x01", b"\x00abc"])
def test_malformed_share_bytes(raw):
    with pytest.raises(ValueError):
        Share.from_bytes(raw)
