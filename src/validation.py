"""
Setup Validation - field-by-field checks for the CTFd setup wizard.

Every rule is checked and all violations are returned together, so a caller
can report them in one response.
"""

import logging
from typing import Any, List

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = [
    "ctf_name",
    "ctf_description",
    "user_mode",
    "challenge_visibility",
    "account_visibility",
    "score_visibility",
    "registration_visibility",
    "ctf_theme",
    "name",
    "email",
    "password",
]

SELECT_VALUES = {
    "user_mode": ["users", "teams"],
    "challenge_visibility": ["public", "private", "admins"],
    "account_visibility": ["public", "private", "admins"],
    "score_visibility": ["public", "private", "hidden", "admins"],
    "registration_visibility": ["public", "private", "mlc"],
}

BRACKET_TYPES = ["", "users", "teams"]
MAX_BRACKET_DESCRIPTION = 255


def _validate_timestamps(start: str, end: str) -> List[str]:
    try:
        start_ts = int(start)
    except ValueError:
        return [f"invalid start timestamp: {start}"]
    if start_ts < 0:
        return ["start timestamp must be a positive integer"]

    try:
        end_ts = int(end)
    except ValueError:
        return [f"invalid end timestamp: {end}"]
    if start_ts >= end_ts:
        return ["start timestamp must be less than end timestamp"]
    return []


def validate_setup_params(params: Any) -> List[str]:
    """
    Validate setup wizard parameters.

    String fields are stripped of surrounding whitespace in place before
    they are checked.

    Args:
        params: A SetupParams model

    Returns:
        List of violation messages, empty when the parameters are valid
    """
    errors: List[str] = []

    for name in REQUIRED_FIELDS:
        value = (getattr(params, name, "") or "").strip()
        setattr(params, name, value)
        if not value:
            errors.append(f"missing required field: {name}")
            continue

        valid_values = SELECT_VALUES.get(name)
        if valid_values and value not in valid_values:
            errors.append(
                f"invalid value for {name}: {value}, "
                f"valid values are: {', '.join(valid_values)}"
            )

    if params.start and params.end:
        errors.extend(_validate_timestamps(params.start.strip(), params.end.strip()))

    if params.team_size is not None and params.team_size < 1:
        errors.append("team size must be greater than 0")

    if params.mail_port is not None and not 1 <= params.mail_port <= 65535:
        errors.append("mail port must be between 1 and 65535")

    for bracket in params.brackets or []:
        bracket.name = (bracket.name or "").strip()
        if not bracket.name:
            errors.append("bracket name cannot be empty")
        if bracket.type not in BRACKET_TYPES:
            errors.append(
                f"invalid bracket type: {bracket.type}, "
                'valid values are: "", "users", "teams"'
            )
        if len(bracket.description or "") > MAX_BRACKET_DESCRIPTION:
            errors.append(
                f"bracket description cannot exceed {MAX_BRACKET_DESCRIPTION} characters"
            )

    if errors:
        logger.debug(f"Setup parameters rejected: {'; '.join(errors)}")
    return errors
