from __future__ import annotations

import httpx
import structlog

from ..models import (
    ArgSpec,
    ArgType,
    CheckFunctionArgs,
    CheckResult,
    FailureMode,
    RuleCategory,
    RuleDefinition,
    RuleInstance,
)
from ..utils.text import truncate
from .base import FAILURE_MODE_ARG, CheckFunction, FailurePolicy, failure_mode, require_services

logger = structlog.get_logger(__name__)

WEBHOOK_TIMEOUT_SECONDS = 5.0
SECRET_HEADER = "x-webhook-secret"


def webhook_failure_result(
    rule: RuleInstance,
    definition: RuleDefinition | None = None,
    *,
    timed_out: bool,
    timeout_seconds: float = WEBHOOK_TIMEOUT_SECONDS,
) -> CheckResult:
    trigger = failure_mode(rule) is FailureMode.TRIGGER
    seconds = f"{timeout_seconds:g}s"
    if timed_out:
        message = (
            f"Webhook didn't respond within {seconds}, rule is set to trigger on failure"
            if trigger
            else f"Webhook did not respond within {seconds}, rule is set to not trigger on failure"
        )
    else:
        message = (
            "Webhook failed but rule is set to trigger on failure"
            if trigger
            else "Webhook failed and rule is set to not trigger on failure"
        )
    return CheckResult(result=trigger, message=message)


def _response_message(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and body.get("message"):
        return truncate(str(body["message"]), 75)
    return None


async def webhook(args: CheckFunctionArgs) -> CheckResult:
    services = require_services(args)
    url = args.rule.args["url"]
    payload = {"user": args.user.to_payload(), "channel": {"id": args.channel.id}}

    try:
        response = await services.http.post(
            url,
            json=payload,
            headers={SECRET_HEADER: services.webhook_secret},
            timeout=WEBHOOK_TIMEOUT_SECONDS,
        )
    except httpx.TimeoutException as exc:
        logger.error("webhook_timeout", channel_id=args.channel.id, url=url, error=str(exc))
        return webhook_failure_result(args.rule, timed_out=True)
    except httpx.HTTPError as exc:
        logger.error("webhook_failed", channel_id=args.channel.id, url=url, error=str(exc))
        return webhook_failure_result(args.rule, timed_out=False)

    # 2xx and 400 are answers; anything else is a failed call
    if not (response.is_success or response.status_code == 400):
        logger.error(
            "webhook_failed",
            channel_id=args.channel.id,
            url=url,
            status=response.status_code,
            body=response.text[:500],
        )
        return webhook_failure_result(args.rule, timed_out=False)

    triggered = response.status_code == 200
    message = _response_message(response)
    if not message:
        message = "Webhook rule triggered" if triggered else "Webhook rule did not trigger"
    logger.debug("webhook_answered", channel_id=args.channel.id, url=url, status=response.status_code)
    return CheckResult(result=triggered, message=message)


DEFINITIONS: dict[str, RuleDefinition] = {
    "webhook": RuleDefinition(
        name="webhook",
        friendly_name="Webhook",
        description="Use an external service to determine if the user should be invited into the channel.",
        category=RuleCategory.ALL,
        check_type=RuleCategory.USER,
        invertable=False,
        allow_multiple=False,
        timeout_seconds=WEBHOOK_TIMEOUT_SECONDS,
        args={
            "url": ArgSpec(
                type=ArgType.STRING,
                required=True,
                pattern=r"^https?://",
                friendly_name="URL",
                description=(
                    "A POST with { user, channel } is made. 200 triggers the rule, 400 does not. "
                    "Return {'message': ...} (max 75 characters) to explain the decision. "
                    "The webhook must answer within 5 seconds."
                ),
            ),
            "failureMode": FAILURE_MODE_ARG,
        },
    ),
}

CHECKS: dict[str, CheckFunction] = {"webhook": webhook}

FAILURE_POLICIES: dict[str, FailurePolicy] = {"webhook": webhook_failure_result}
