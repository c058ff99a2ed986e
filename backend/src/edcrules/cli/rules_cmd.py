"""Rule commands: list a form's rules and try a rule against a value."""

import json

import click
from pydantic import ValidationError

from edcrules.bootstrap import initialize_services
from edcrules.rules import RuleAccessDenied, RuleKind, Severity


@click.group()
def rules():
    """Validation rule commands."""
    pass


@rules.command("list")
@click.argument("form_id", type=int)
@click.option("--user-id", type=int, default=None, help="Caller, for organization scoping.")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print rules as JSON.")
def list_rules(form_id: int, user_id: int | None, as_json: bool):
    """List the merged rules of a form."""
    services = initialize_services()
    try:
        found = services.management.list_rules_for_form(form_id, user_id)
    except RuleAccessDenied as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    if as_json:
        click.echo(json.dumps([rule.to_dict() for rule in found], indent=2, default=str))
        return
    if not found:
        click.echo(f"No rules for form {form_id}.")
        return
    for rule in found:
        state = "" if rule.active else " (inactive)"
        click.echo(
            f"[{rule.origin.value}] {rule.name}: {rule.kind.value} on {rule.field_path} "
            f"({rule.severity.value}){state}"
        )


@rules.command("test")
@click.option(
    "--kind",
    "rule_type",
    required=True,
    type=click.Choice([kind.value for kind in RuleKind]),
    help="Rule kind to try.",
)
@click.option("--severity", default=Severity.ERROR.value, type=click.Choice([s.value for s in Severity]))
@click.option("--min", "min_value", default=None, help="Range minimum (number or ISO date).")
@click.option("--max", "max_value", default=None, help="Range maximum (number or ISO date).")
@click.option("--pattern", default=None, help="Regex or =formula.")
@click.option("--format-type", default=None, help="Semantic format key.")
@click.option("--operator", default=None, help="Consistency operator.")
@click.option("--compare-field", "compare_field_path", default=None, help="Consistency comparison field.")
@click.option("--expression", "custom_expression", default=None, help="Formula or expression.")
@click.option("--data", "data_json", default="{}", help="Other field values as a JSON object.")
@click.argument("value")
def try_rule(rule_type, severity, min_value, max_value, pattern, format_type, operator,
              compare_field_path, custom_expression, data_json, value):
    """Try an unsaved rule against VALUE."""
    try:
        all_values = json.loads(data_json)
    except json.JSONDecodeError as e:
        click.echo(f"Error: --data is not valid JSON: {e}", err=True)
        raise SystemExit(1)

    services = initialize_services()
    try:
        outcome = services.management.test_rule(
            {
                "ruleType": rule_type,
                "severity": severity,
                "minValue": min_value,
                "maxValue": max_value,
                "pattern": pattern,
                "formatType": format_type,
                "operator": operator,
                "compareFieldPath": compare_field_path,
                "customExpression": custom_expression,
                "value": value,
                "allValues": all_values,
            }
        )
    except ValidationError as e:
        click.echo(f"Error: invalid rule: {e}", err=True)
        raise SystemExit(1)

    status = "VALID" if outcome.valid else "INVALID"
    detail = f" ({outcome.detail})" if outcome.detail else ""
    click.echo(f"{status}{detail}")
    if not outcome.valid:
        raise SystemExit(2)
