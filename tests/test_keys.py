"""Tests for the bundled master key providers and the provider registry."""

import stat

import pytest

from doubles import DATA_KEY, FakeMasterKey
from sealtree.errors import MetadataError, SealTreeError
from sealtree.keys import (
    PROVIDERS,
    LocalMasterKey,
    PassphraseMasterKey,
    derive_kek,
    generate_data_key,
    master_key_from_dict,
    open_key,
    seal_key,
)

LOW_ITERATIONS = 1_000


def test_generate_data_key():
    key = generate_data_key()
    assert len(key) == 32
    assert key != generate_data_key()


def test_seal_and_open():
    kek = generate_data_key()
    blob = seal_key(DATA_KEY, kek)
    assert DATA_KEY not in blob
    assert open_key(blob, kek) == DATA_KEY
    with pytest.raises(SealTreeError):
        open_key(blob, generate_data_key())
    with pytest.raises(SealTreeError, match="truncated"):
        open_key(blob[:5], kek)


def test_derive_kek_is_deterministic_per_salt():
    salt = b"s" * 16
    assert derive_kek("pw", salt, LOW_ITERATIONS) == derive_kek("pw", salt, LOW_ITERATIONS)
    assert derive_kek("pw", salt, LOW_ITERATIONS) != derive_kek("pw", b"t" * 16, LOW_ITERATIONS)


def test_local_key_round_trip(tmp_path):
    key = LocalMasterKey.generate(tmp_path / "keys" / "ops.key")
    assert stat.S_IMODE((tmp_path / "keys" / "ops.key").stat().st_mode) == 0o600
    blob = key.wrap(DATA_KEY)
    assert key.unwrap(blob) == DATA_KEY


def test_local_key_rejects_other_keys_blob(tmp_path):
    first = LocalMasterKey.generate(tmp_path / "a.key")
    second = LocalMasterKey.generate(tmp_path / "b.key")
    with pytest.raises(SealTreeError):
        second.unwrap(first.wrap(DATA_KEY))


def test_local_key_file_must_hold_256_bits(tmp_path):
    key_file = tmp_path / "short.key"
    key_file.write_text("c2hvcnQ=")
    with pytest.raises(SealTreeError, match="256-bit"):
        LocalMasterKey(str(key_file)).wrap(DATA_KEY)


def test_passphrase_key_round_trip():
    key = PassphraseMasterKey("ops", passphrase="correct horse", iterations=LOW_ITERATIONS)
    blob = key.wrap(DATA_KEY)
    assert key.unwrap(blob) == DATA_KEY
    # fresh salt every wrap
    assert key.wrap(DATA_KEY)[:16] != blob[:16]


def test_passphrase_from_environment(monkeypatch):
    key = PassphraseMasterKey("team-ops", iterations=LOW_ITERATIONS)
    assert key.env_var == "SEALTREE_PASSPHRASE_TEAM_OPS"
    monkeypatch.setenv(key.env_var, "from the environment")
    blob = key.wrap(DATA_KEY)

    explicit = PassphraseMasterKey("team-ops", passphrase="from the environment", iterations=LOW_ITERATIONS)
    assert explicit.unwrap(blob) == DATA_KEY


def test_missing_passphrase(monkeypatch):
    key = PassphraseMasterKey("nobody", iterations=LOW_ITERATIONS)
    monkeypatch.delenv(key.env_var, raising=False)
    with pytest.raises(SealTreeError, match=key.env_var):
        key.wrap(DATA_KEY)


def test_wrong_passphrase():
    blob = PassphraseMasterKey("ops", passphrase="right", iterations=LOW_ITERATIONS).wrap(DATA_KEY)
    with pytest.raises(SealTreeError):
        PassphraseMasterKey("ops", passphrase="wrong", iterations=LOW_ITERATIONS).unwrap(blob)


def test_persisted_form_round_trip():
    key = PassphraseMasterKey("ops", passphrase="correct horse battery", iterations=LOW_ITERATIONS)
    key.encrypted_key = key.wrap(DATA_KEY)
    data = key.to_dict()
    assert data["type"] == "passphrase"
    assert "correct horse battery" not in str(data)

    restored = master_key_from_dict(data)
    assert isinstance(restored, PassphraseMasterKey)
    assert restored == key
    assert restored.iterations == LOW_ITERATIONS
    assert restored.encrypted_key == key.encrypted_key
    assert restored.created_at == key.created_at


def test_key_without_blob_persists_without_enc():
    data = FakeMasterKey("a").to_dict()
    assert "enc" not in data
    assert master_key_from_dict(data).encrypted_key is None


def test_registry():
    assert PROVIDERS["local"] is LocalMasterKey
    assert PROVIDERS["passphrase"] is PassphraseMasterKey
    assert PROVIDERS["fake"] is FakeMasterKey


@pytest.mark.parametrize("data", [
    {"type": "carrier-pigeon", "id": "x"},
    {"id": "x"},
    {"type": "fake", "id": "x", "enc": "!!not base64!!"},
    "not a mapping",
])
def test_bad_persisted_keys(data):
    with pytest.raises(MetadataError):
        master_key_from_dict(data)


def test_identity_equality():
    assert FakeMasterKey("a", encrypted_key=b"1") == FakeMasterKey("a", encrypted_key=b"2")
    assert FakeMasterKey("a") != FakeMasterKey("b")
    assert FakeMasterKey("a") != LocalMasterKey("a")
    assert len({FakeMasterKey("a"), FakeMasterKey("a")}) == 1
    assert repr(FakeMasterKey("a")) == "fake:a"


def test_derive_kek_validates_parameters():
    with pytest.raises(SealTreeError, match="salt"):
        derive_kek("pw", b"short", LOW_ITERATIONS)
    with pytest.raises(SealTreeError, match="iteration"):
        derive_kek("pw", b"s" * 16, 0)


def test_truncated_passphrase_blob():
    key = PassphraseMasterKey("ops", passphrase="pw", iterations=LOW_ITERATIONS)
    with pytest.raises(SealTreeError):
        key.unwrap(b"\x00" * 8)
