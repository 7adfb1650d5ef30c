"""
test_cli.py - tufkeys command line

Run:
  pytest tests/test_cli.py -v
"""

import sys
import unittest.mock as mock

import pytest

from tufkeys.cli import _cli_error, _fail_with_error, build_parser, main
from tufkeys.errors import CredentialCommitError, TufKeysError
from tufkeys.offline_creds import load_offline_creds

from conftest import FACTORY, TXID, make_targets, make_updates, write_service_dir


@pytest.fixture
def service_dir(tmp_path, factory_root, online_key):
    write_service_dir(
        tmp_path / "txn",
        make_updates(factory_root, online_key, current=factory_root.copy()),
        {tag: make_targets(online_key, tag) for tag in ("main", "qa")},
    )
    return tmp_path / "txn"


def run(argv):
    with mock.patch.object(sys, "argv", ["tufkeys"] + argv):
        main()


def test_fail_with_error(capsys):
    err = TufKeysError(code="TEST_ERR", message="Test message.", context="test context", fix="do it")
    with pytest.raises(SystemExit) as e:
        _fail_with_error(err)
    assert e.value.code == 1
    assert "ERROR: TEST_ERR. Test message. Context: test context. Fix: do it." in capsys.readouterr().out


def test_cli_error(capsys):
    with pytest.raises(SystemExit) as e:
        _cli_error("What", "Why", "Fix")
    assert e.value.code == 1
    assert "ERROR: What. Why. Fix: Fix." in capsys.readouterr().out


def test_parser_defaults_from_environment(monkeypatch):
    monkeypatch.setenv("TUFKEYS_FACTORY", "env-factory")
    monkeypatch.setenv("TUFKEYS_SERVICE", "dir:/srv/txn")
    args = build_parser().parse_args(["rotate-offline-key", "-r", "root", "-x", "t", "-k", "k.tgz"])
    assert args.factory == "env-factory"
    assert args.service == "dir:/srv/txn"
    assert args.key_type == "ed25519"
    assert args.sign is False


def test_parser_requires_role_and_txid(capsys):
    with pytest.raises(SystemExit) as e:
        build_parser().parse_args(["rotate-offline-key", "-k", "k.tgz"])
    assert e.value.code == 2


def test_rotate_root_key(tmp_path, service_dir, keys_file, capsys):
    before = load_offline_creds(keys_file)
    run([
        "rotate-offline-key", "--factory", FACTORY, "--service", f"dir:{service_dir}",
        "--role", "Root", "--txid", TXID, "--keys", str(keys_file), "--sign",
    ])
    out = capsys.readouterr().out
    assert "= New root keyid:" in out
    assert f"Keys saved to: {keys_file}" in out
    assert len(load_offline_creds(keys_file)) == len(before) + 2
    assert (service_dir / "uploads" / f"{TXID}.json").exists()


def test_rotate_targets_key_short_flags(tmp_path, service_dir, keys_file, capsys):
    targets_file = tmp_path / "targets.tgz"
    main([
        "rotate-offline-key", "--factory", FACTORY, "--service", f"dir:{service_dir}",
        "-r", "targets", "-x", TXID, "-k", str(keys_file), "-K", str(targets_file), "-s",
    ])
    out = capsys.readouterr().out
    assert "= New targets keyid:" in out
    assert "= Re-signing prod targets" in out
    assert len(load_offline_creds(targets_file)) == 2


def test_missing_factory(keys_file, service_dir, monkeypatch, capsys):
    monkeypatch.delenv("TUFKEYS_FACTORY", raising=False)
    with pytest.raises(SystemExit) as e:
        main(["rotate-offline-key", "--service", f"dir:{service_dir}", "-r", "root", "-x", TXID, "-k", str(keys_file)])
    assert e.value.code == 1
    assert "ERROR: No factory given." in capsys.readouterr().out


def test_missing_service(keys_file, monkeypatch, capsys):
    monkeypatch.delenv("TUFKEYS_SERVICE", raising=False)
    with pytest.raises(SystemExit) as e:
        main(["rotate-offline-key", "--factory", FACTORY, "-r", "root", "-x", TXID, "-k", str(keys_file)])
    assert e.value.code == 1
    assert "ERROR: No transaction service given." in capsys.readouterr().out


def test_unsupported_role(keys_file, service_dir, capsys):
    with pytest.raises(SystemExit) as e:
        main([
            "rotate-offline-key", "--factory", FACTORY, "--service", f"dir:{service_dir}",
            "-r", "snapshot", "-x", TXID, "-k", str(keys_file),
        ])
    assert e.value.code == 1
    assert "TUFKEYS_E200" in capsys.readouterr().out


def test_wrong_txid_reports_kept_temp_file(keys_file, service_dir, capsys):
    before = keys_file.read_bytes()
    with pytest.raises(SystemExit) as e:
        main([
            "rotate-offline-key", "--factory", FACTORY, "--service", f"dir:{service_dir}",
            "-r", "root", "-x", "tx-other", "-k", str(keys_file),
        ])
    assert e.value.code == 1
    out = capsys.readouterr().out
    assert "TUFKEYS_E300" in out
    assert "Your offline keys file was not changed." in out
    assert "New, unpublished private keys were kept at:" in out
    assert keys_file.read_bytes() == before
    assert list(keys_file.parent.glob("*.tmp"))


def test_commit_failure_prints_recovery(keys_file, service_dir, capsys):
    def failing_replace(tmp, path):
        raise CredentialCommitError(tmp, f"{path}: read-only")

    # the directory service renames its own files, so only the archive commit fails
    with mock.patch("tufkeys.orchestrator.replace_creds", side_effect=failing_replace):
        with pytest.raises(SystemExit) as e:
            main([
                "rotate-offline-key", "--factory", FACTORY, "--service", f"dir:{service_dir}",
                "-r", "root", "-x", TXID, "-k", str(keys_file),
            ])
    assert e.value.code == 2
    out = capsys.readouterr().out
    assert "Unable to update offline keys file." in out
    assert "Temp copy still available at:" in out
    assert "This temp file contains your new factory private key." in out
