import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

import audit
import simulate


def test_simulated_skirmish_runs_every_round():
    log = simulate.run_combat(seed=3, rounds=3)
    assert log[0] == "=== Round 1 ==="
    assert "=== Round 3 ===" in log
    assert log[-3] == "=== Final ==="
    assert any(line.startswith("[ACT] Vera uses Rally") for line in log)
    assert any(line.startswith("[ACT] Vera uses Burning Verse") for line in log)
    assert any(line.startswith("[ROUND] Vera:") for line in log)


def test_same_seed_same_log():
    assert simulate.run_combat(seed=11, rounds=2) == simulate.run_combat(seed=11, rounds=2)


def test_audit_of_shipped_data_is_clean(capsys):
    assert audit.main() == 0
    out = capsys.readouterr().out
    assert "STATUS: clean" in out
    assert "addBuff" in out
