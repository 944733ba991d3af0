import json

import pytest

from conftest import NOW, wallet
from solana_allowlist import cli
from solana_allowlist.audit import build_audit, verify_audit
from solana_allowlist.errors import ValidationError
from solana_allowlist.selection import DrawOptions, WinnerSelector

SEED = "4vJ9JU1bJJE96FWSJKvHsmmFADCg4gpZQff4P3bkLKi"


def seeded_audit(repo, make_event, make_entry):
    event = make_event(max_winners=3)
    for i in range(12):
        make_entry(event, i + 1)
    result = WinnerSelector(repo).draw_for_event(event, DrawOptions(picked_by="admin-1", seed=SEED))
    return build_audit(event, result, SEED)


def test_audit_round_trip(repo, make_event, make_entry):
    audit = seeded_audit(repo, make_event, make_entry)

    checked = verify_audit(json.loads(json.dumps(audit)))

    assert checked["ok"]
    assert checked["pool_size"] == 12
    assert checked["winners"] == [w["entry_id"] for w in audit["winners"]]


def test_tampered_audit_is_rejected(repo, make_event, make_entry):
    audit = seeded_audit(repo, make_event, make_entry)
    picked = {w["entry_id"] for w in audit["winners"]}
    audit["winners"][0]["entry_id"] = next(e for e in audit["pool"] if e not in picked)

    with pytest.raises(ValidationError) as exc:
        verify_audit(audit)
    assert exc.value.code == "AUDIT_MISMATCH"

    audit = seeded_audit(repo, make_event, make_entry)
    audit["metadata"]["seed"] = "another-seed"
    with pytest.raises(ValidationError):
        verify_audit(audit)


def test_unseeded_draw_has_no_audit(repo, make_event, make_entry):
    event = make_event()
    make_entry(event, 1)
    result = WinnerSelector(repo).draw_for_event(event, DrawOptions(picked_by="admin-1"))

    with pytest.raises(ValidationError):
        build_audit(event, result, SEED)


def run(argv):
    args = cli.build_parser().parse_args(argv)
    return args.func(args)


def test_cli_draw_then_audit(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("FACTS_TIMEOUT_S", raising=False)
    state = tmp_path / "state.json"
    state.write_text(json.dumps({
        "events": [{"id": "evt-cli", "maxWinners": 2, "communityId": "c1"}],
        "entries": [
            {"id": f"e{i}", "eventId": "evt-cli", "walletAddress": wallet(i), "status": "VALID",
             "createdAt": NOW.isoformat()}
            for i in range(1, 6)
        ],
    }))
    out = tmp_path / "audit.json"

    assert run(["draw", "--state", str(state), "--event", "evt-cli", "--picked-by", "admin-1",
                "--seed", SEED, "--out", str(out)]) == 0
    saved = json.loads(state.read_text())
    assert len(saved["winners"]) == 2

    assert run(["audit", "--audit", str(out)]) == 0
    assert "AUDIT VERIFIED" in capsys.readouterr().out


def test_cli_account_age_rejects_garbage():
    with pytest.raises(ValidationError) as exc:
        run(["account-age", "--id", "nope"])
    assert exc.value.code == "INVALID_SNOWFLAKE"
