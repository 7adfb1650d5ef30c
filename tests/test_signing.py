"""
test_signing.py - Canonical signing and root threshold verification

Run:
  pytest tests/test_signing.py -v
"""

import base64

from tufkeys.canonical_json import canonical_bytes
from tufkeys.key_types import generate_key_pair
from tufkeys.metadata import Signature
from tufkeys.signing import (
    count_valid_signatures,
    sign_bytes,
    sign_metadata,
    verify_root_role,
    verify_signature,
)

from conftest import ED25519, make_root

try:
    from hypothesis import given, settings, strategies as st
except ImportError:  # pragma: no cover
    given = None


def test_sign_metadata_signs_canonical_bytes(root_key):
    payload = {"b": 2, "a": 1}
    [sig] = sign_metadata(payload, [root_key.signer])
    assert sig.keyid == root_key.key_id
    assert verify_signature(root_key.public, sig, canonical_bytes(payload))
    assert verify_signature(root_key.public, sig, b'{"a":1,"b":2}')


def test_sign_metadata_is_stable_per_signer(root_key):
    first = sign_metadata({"x": 1}, [root_key.signer])
    second = sign_metadata({"x": 1}, [root_key.signer])
    # Ed25519 is deterministic
    assert first == second


def test_sign_bytes_keeps_signer_order(root_key, online_key):
    sigs = sign_bytes(b"m", [online_key.signer, root_key.signer])
    assert [s.keyid for s in sigs] == [online_key.key_id, root_key.key_id]


def test_verify_signature_rejects_mismatches(root_key, online_key):
    [sig] = sign_bytes(b"m", [root_key.signer])
    assert not verify_signature(online_key.public, sig, b"m")
    assert not verify_signature({"keytype": "ECDSA", "keyval": {"public": "00"}}, sig, b"m")
    assert not verify_signature(root_key.public, Signature(sig.keyid, "rsassa-pss-sha256", sig.sig), b"m")
    assert not verify_signature(root_key.public, Signature(sig.keyid, sig.method, "!!not-base64"), b"m")


def test_count_valid_signatures_counts_distinct_role_keys(root_key, online_key):
    root = make_root([root_key], [online_key])
    sig = root_key.signer.sign(root.signed_bytes())
    root.signatures = [sig, sig, online_key.signer.sign(root.signed_bytes())]
    assert count_valid_signatures(root, root, "root") == 1
    assert count_valid_signatures(root, root, "targets") == 1
    assert count_valid_signatures(root, root, "snapshot") == 0


def test_verify_root_role_threshold():
    k1, k2 = generate_key_pair(ED25519), generate_key_pair(ED25519)
    root = make_root([k1, k2], [], root_threshold=2)
    root.signatures = [k1.signer.sign(root.signed_bytes())]
    assert not verify_root_role(root, root)
    root.signatures.append(k2.signer.sign(root.signed_bytes()))
    assert verify_root_role(root, root)


def test_verify_root_role_detects_tampering(root_key):
    root = make_root([root_key], [])
    root.signatures = [root_key.signer.sign(root.signed_bytes())]
    assert verify_root_role(root, root)
    root.version += 1
    assert not verify_root_role(root, root)


def test_forged_signature_bytes_rejected(root_key):
    root = make_root([root_key], [])
    real = root_key.signer.sign(root.signed_bytes())
    forged = bytearray(real.sig_bytes)
    forged[0] ^= 0xFF
    root.signatures = [Signature(real.keyid, real.method, base64.b64encode(bytes(forged)).decode())]
    assert not verify_root_role(root, root)


if given is not None:
    @settings(max_examples=50, deadline=None)
    @given(st.dictionaries(st.text(alphabet="abcdefgh", max_size=6), st.integers(), max_size=5))
    def test_any_payload_verifies(root_key, payload):
        [sig] = sign_metadata(payload, [root_key.signer])
        assert verify_signature(root_key.public, sig, canonical_bytes(payload))
