"""
Contract Validator for raw model output.

Provides:
- normalize_payload: light, lossless clean-up of common model formatting slips
- validate_contract: full structural + cross-field validation that reports
  every violated field at once

Validation never repairs structure and never fills in missing data. A
failed payload is surfaced verbatim (as a list of issues) so the caller can
request a targeted re-generation.
"""

import copy
import re
from datetime import date, datetime
from typing import Any

from pydantic import ValidationError

from ..errors import ContractValidationError, ValidationIssue
from ..logging import get_logger
from ..models.contract import SUPPORTED_SCHEMA_VERSIONS, ExtractionContract
from ..models.enums import MeetingCategory

logger = get_logger(__name__)

_DATE_RE = re.compile(r'^\d{4}-\d{2}-\d{2}$')
_TIMESTAMP_RE = re.compile(r'^\d{2}:\d{2}:\d{2}$')
_LOOSE_TIME_RE = re.compile(r'^(\d{1,2}):(\d{2})(?::(\d{2}))?$')

_STATUS_ALIASES = {
    'open': 'Open',
    'in progress': 'In Progress',
    'in_progress': 'In Progress',
    'inprogress': 'In Progress',
    'closed': 'Closed',
}

_LEVEL_ALIASES = {
    'low': 'Low',
    'med': 'Med',
    'medium': 'Med',
    'high': 'High',
}


# =============================================================================
# Normalization
# =============================================================================


def _fix_date(value: Any) -> Any:
    """Reformat an unambiguous ISO-like date (or datetime) to YYYY-MM-DD."""
    if not isinstance(value, str) or _DATE_RE.match(value):
        return value
    candidate = value.strip()
    try:
        return datetime.fromisoformat(candidate).date().isoformat()
    except ValueError:
        pass
    try:
        return date.fromisoformat(candidate).isoformat()
    except ValueError:
        return value


def _fix_timestamp(value: Any) -> Any:
    """Pad H:MM, HH:MM and H:MM:SS to HH:MM:SS."""
    if not isinstance(value, str) or _TIMESTAMP_RE.match(value):
        return value
    match = _LOOSE_TIME_RE.match(value.strip())
    if not match:
        return value
    hours, minutes, seconds = match.group(1), match.group(2), match.group(3) or '00'
    return f"{hours.zfill(2)}:{minutes}:{seconds}"


def _fix_alias(value: Any, aliases: dict[str, str]) -> Any:
    if not isinstance(value, str):
        return value
    return aliases.get(value.strip().lower(), value)


def _fix_evidence(entity: dict[str, Any]) -> None:
    evidence = entity.get('evidence')
    if not isinstance(evidence, list):
        return
    for item in evidence:
        if isinstance(item, dict) and 'timestamp' in item:
            item['timestamp'] = _fix_timestamp(item['timestamp'])


def _dicts(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, dict)]


def normalize_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """
    Return a normalized deep copy of a raw model payload.

    Only value formatting is touched: enum casing, loose dates and loose
    timestamps. Missing keys stay missing and unparseable values are left
    as-is so validation reports them.

    Args:
        payload: Raw JSON object returned by the model

    Returns:
        Normalized copy (the input is not modified)
    """
    cleaned = copy.deepcopy(payload)

    meeting = cleaned.get('meeting')
    if isinstance(meeting, dict) and 'date' in meeting:
        meeting['date'] = _fix_date(meeting['date'])

    for item in _dicts(cleaned.get('action_items')):
        if 'status' in item:
            item['status'] = _fix_alias(item['status'], _STATUS_ALIASES)
        if 'due_date' in item:
            item['due_date'] = _fix_date(item['due_date'])
        _fix_evidence(item)

    recap = cleaned.get('recap')
    if isinstance(recap, dict):
        for item in _dicts(recap.get('action_items_summary')):
            if 'status' in item:
                item['status'] = _fix_alias(item['status'], _STATUS_ALIASES)
            if 'due_date' in item:
                item['due_date'] = _fix_date(item['due_date'])

    for decision in _dicts(cleaned.get('decisions')):
        _fix_evidence(decision)

    for risk in _dicts(cleaned.get('risks')):
        if 'status' in risk:
            risk['status'] = _fix_alias(risk['status'], _STATUS_ALIASES)
        for key in ('probability', 'impact'):
            if key in risk:
                risk[key] = _fix_alias(risk[key], _LEVEL_ALIASES)
        _fix_evidence(risk)

    tone = cleaned.get('tone')
    if isinstance(tone, dict):
        for participant in _dicts(tone.get('participants')):
            for key in ('happiness', 'buy_in'):
                if key in participant:
                    participant[key] = _fix_alias(participant[key], _LEVEL_ALIASES)

    return cleaned


# =============================================================================
# Validation
# =============================================================================


def _format_loc(loc: tuple[Any, ...]) -> str:
    """('action_items', 0, 'evidence') -> 'action_items[0].evidence'"""
    path = ''
    for part in loc:
        if isinstance(part, int):
            path += f'[{part}]'
        else:
            path += f'.{part}' if path else str(part)
    return path or '$'


def _issues_from_pydantic(exc: ValidationError) -> list[ValidationIssue]:
    issues = []
    for error in exc.errors(include_url=False):
        # Strip the 'Value error, ' prefix pydantic adds to custom validators
        message = error['msg'].removeprefix('Value error, ')
        issues.append(
            ValidationIssue(path=_format_loc(error['loc']), message=message, code=error['type'])
        )
    return issues


def _resolve_category(
    payload: dict[str, Any], category: MeetingCategory | str | None
) -> MeetingCategory | None:
    raw = category
    if raw is None:
        meeting = payload.get('meeting')
        raw = meeting.get('category') if isinstance(meeting, dict) else None
    try:
        return MeetingCategory(raw) if raw is not None else None
    except ValueError:
        return None


def _fishbone_outline_populated(outline: Any) -> bool:
    if not isinstance(outline, dict):
        return False
    statement = outline.get('problem_statement')
    if not isinstance(statement, str) or not statement.strip():
        return False
    return any(
        isinstance(c, dict) and isinstance(c.get('causes'), list) and c['causes']
        for c in outline.get('categories') or []
    )


def check_fishbone(
    fishbone: Any, category: MeetingCategory | None
) -> list[ValidationIssue]:
    """
    Cross-field rule: the fishbone is required iff the meeting is Remediation.

    Remediation meetings need an enabled fishbone with a populated outline
    (problem statement and at least one category with causes). Every other
    category must have the fishbone disabled with an empty outline.
    """
    if category is None or not isinstance(fishbone, dict):
        # Unknown category or missing fishbone is already a field-level issue
        return []

    enabled = fishbone.get('enabled') is True
    if category == MeetingCategory.REMEDIATION:
        issues = []
        if not enabled:
            issues.append(
                ValidationIssue(
                    path='fishbone.enabled',
                    message='Fishbone must be enabled for Remediation meetings',
                    code='fishbone_required',
                )
            )
        if not _fishbone_outline_populated(fishbone.get('outline')):
            issues.append(
                ValidationIssue(
                    path='fishbone.outline',
                    message='Fishbone outline with a problem statement and causes is required '
                    'for Remediation meetings',
                    code='fishbone_required',
                )
            )
        return issues

    issues = []
    if enabled:
        issues.append(
            ValidationIssue(
                path='fishbone.enabled',
                message='Fishbone must be disabled for non-Remediation meetings',
                code='fishbone_unexpected',
            )
        )
    if fishbone.get('outline'):
        issues.append(
            ValidationIssue(
                path='fishbone.outline',
                message='Fishbone outline must be empty for non-Remediation meetings',
                code='fishbone_unexpected',
            )
        )
    return issues


def validate_contract(
    payload: Any,
    category: MeetingCategory | str | None = None,
) -> ExtractionContract:
    """
    Validate a raw model payload against the extraction contract.

    Args:
        payload: Raw JSON object returned by the model
        category: Stored meeting category; falls back to the payload's own
                  meeting.category for the fishbone rule when not given

    Returns:
        The validated ExtractionContract

    Raises:
        ContractValidationError: With every issue found, not only the first
    """
    if not isinstance(payload, dict):
        raise ContractValidationError(
            [ValidationIssue(path='$', message='Payload must be a JSON object', code='dict_type')]
        )

    version = payload.get('schema_version')
    if version not in SUPPORTED_SCHEMA_VERSIONS:
        # Nothing else is interpretable without a known schema
        raise ContractValidationError(
            [
                ValidationIssue(
                    path='schema_version',
                    message=f"Unsupported schema_version: {version!r}",
                    code='unsupported_schema_version',
                )
            ],
            context={'schema_version': version},
        )

    normalized = normalize_payload(payload)
    issues: list[ValidationIssue] = []
    contract: ExtractionContract | None = None

    try:
        contract = ExtractionContract.model_validate(normalized)
    except ValidationError as e:
        issues.extend(_issues_from_pydantic(e))

    issues.extend(
        check_fishbone(normalized.get('fishbone'), _resolve_category(normalized, category))
    )

    if issues or contract is None:
        logger.warning(
            'validator.contract_rejected',
            issue_count=len(issues),
            paths=[i.path for i in issues],
        )
        raise ContractValidationError(issues)

    logger.debug(
        'validator.contract_accepted',
        action_items=len(contract.action_items),
        decisions=len(contract.decisions),
        risks=len(contract.risks),
    )
    return contract
