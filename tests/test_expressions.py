import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from shd_rules.expressions import evaluate, validate
from shd_rules.models import ActorState, BuffInstance, DiceContext, ExecutionContext


def _ctx(*buffs, **kwargs):
    actor = ActorState(actor_id="hero", buffs=list(buffs))
    return ExecutionContext(actor=actor, **kwargs)


def test_layer_reference_inside_function():
    ctx = _ctx(BuffInstance(id="a", layers=10))
    assert evaluate("floor({a.layers}/4)", ctx) == 2


def test_operator_precedence():
    assert evaluate("2+2*3") == 8
    assert evaluate("(2+2)*3") == 12


@pytest.mark.parametrize(
    "text",
    [
        "import(os)",
        "__import__('os').system('echo hi')",
        "().__class__.__bases__",
        "open('/etc/passwd')",
        "lambda: 1",
        "'abc'",
        "2**10",
        "[1, 2]",
    ],
)
def test_injection_attempts_evaluate_to_zero(text):
    assert evaluate(text, _ctx()) == 0


def test_missing_stack_and_unknown_reference_are_zero():
    ctx = _ctx()
    assert evaluate("{burn.layers}", ctx) == 0
    assert evaluate("{x}+3", ctx) == 3
    assert evaluate("{burn.colour}+1", ctx) == 1


def test_potency_and_strength_references_read_active_stacks():
    ctx = _ctx(
        BuffInstance(id="burn", layers=2, potency=4),
        BuffInstance(id="burn", layers=1, potency=1, timing="both"),
        BuffInstance(id="burn", layers=7, potency=9, timing="next"),
    )
    assert evaluate("{burn.layers}", ctx) == 3
    assert evaluate("{burn.potency}", ctx) == 5
    assert evaluate("{burn.strength}*2", ctx) == 10


def test_pooled_references():
    ctx = _ctx()
    ctx.actor.pool.bonus = [True, True, False]
    ctx.actor.pool.primary = [True, False, False, False, False, False]
    assert evaluate("{pooled.extra}", ctx) == 2
    assert evaluate("{pooled.used}", ctx) == 1
    assert evaluate("{pooled.available}", ctx) == 1


def test_dice_references():
    ctx = _ctx(dice=DiceContext(base_value=7, final_value=9))
    assert evaluate("{dice.finalValue} - {dice.baseValue}", ctx) == 2
    assert evaluate("{dice.finalValue}", _ctx()) == 0


def test_whitelisted_functions():
    assert evaluate("max(1, 5, 3)") == 5
    assert evaluate("min(4, 2)") == 2
    assert evaluate("abs(-4)") == 4
    assert evaluate("ceil(1.2)") == 2
    assert evaluate("round(2.5)") == 3
    assert evaluate("round(2.4)") == 2


def test_modulo_keeps_dividend_sign():
    assert evaluate("7 % 3") == 1
    assert evaluate("-7 % 3") == -1


def test_numbers_pass_through_and_failures_are_zero():
    assert evaluate(7) == 7
    assert evaluate("3.5") == pytest.approx(3.5)
    assert evaluate(float("inf")) == 0
    assert evaluate(None) == 0
    assert evaluate("") == 0
    assert evaluate("1/0") == 0
    assert evaluate("2 +") == 0
    assert evaluate("floor()") == 0
    assert evaluate("nosuch(1)") == 0


def test_results_are_normalized_to_int_when_integral():
    value = evaluate("6/2")
    assert value == 3
    assert isinstance(value, int)


@pytest.mark.parametrize(
    "text",
    ["floor({a.layers}/4)", "{pooled.extra} + 1", "1d6+2", "max({burn.layers}, 2) % 3", "-3"],
)
def test_validate_accepts_well_formed_expressions(text):
    assert validate(text) == {"valid": True, "error": None}


def test_validate_accepts_numbers():
    assert validate(5)["valid"] is True
    assert validate(2.5)["valid"] is True


@pytest.mark.parametrize(
    "text,error",
    [
        ("{a.layers", "unbalanced braces"),
        ("a.layers}", "unbalanced braces"),
        ("{{a.layers}}", "unbalanced braces"),
        ("{x}+3", "malformed reference: {x}"),
        ("2 +", "syntax error"),
        ("", "empty expression"),
    ],
)
def test_validate_reports_shape_errors(text, error):
    result = validate(text)
    assert result["valid"] is False
    assert result["error"] == error


def test_validate_rejects_non_whitelisted_nodes():
    assert validate("open('x')")["valid"] is False
    assert validate("2**3")["valid"] is False
    assert validate("floor(1, 2)")["valid"] is False
    assert validate(True)["valid"] is False
    assert validate(["1"])["valid"] is False
