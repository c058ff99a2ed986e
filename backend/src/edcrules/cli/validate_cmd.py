"""Validation commands."""

import json

import click

from edcrules.bootstrap import initialize_services
from edcrules.validation import ValidationOptions


def _echo_result(result) -> None:
    click.echo(json.dumps(result.to_dict(), indent=2))
    if not result.valid:
        raise SystemExit(2)


@click.command()
@click.argument("form_id", type=int)
@click.argument("data_json")
@click.option("--create-queries", is_flag=True, default=False, help="Raise queries for failures.")
@click.option("--study-id", type=int, default=None)
@click.option("--subject-id", type=int, default=None)
@click.option("--instance-id", type=int, default=None, help="Stored instance, for data point links.")
@click.option("--user-id", type=int, default=None, help="User reporting the queries.")
def validate(form_id, data_json, create_queries, study_id, subject_id, instance_id, user_id):
    """Validate DATA_JSON (a JSON object) against the rules of FORM_ID."""
    try:
        form_data = json.loads(data_json)
    except json.JSONDecodeError as e:
        click.echo(f"Error: form data is not valid JSON: {e}", err=True)
        raise SystemExit(1)
    if not isinstance(form_data, dict):
        click.echo("Error: form data must be a JSON object", err=True)
        raise SystemExit(1)

    services = initialize_services()
    options = ValidationOptions(
        create_queries=create_queries,
        study_id=study_id,
        subject_id=subject_id,
        instance_id=instance_id,
        user_id=user_id,
    )
    _echo_result(services.orchestrator.validate_form_data(form_id, form_data, options))


@click.command("validate-instance")
@click.argument("instance_id", type=int)
@click.option("--create-queries", is_flag=True, default=False, help="Raise queries for failures.")
@click.option("--user-id", type=int, default=None, help="User reporting the queries.")
def validate_instance(instance_id, create_queries, user_id):
    """Validate the stored values of form instance INSTANCE_ID."""
    services = initialize_services()
    try:
        result = services.orchestrator.validate_form_instance(instance_id, create_queries, user_id)
    except LookupError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    _echo_result(result)
