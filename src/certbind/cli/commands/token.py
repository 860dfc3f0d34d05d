"""``token`` subcommand: mint a bearer token for the trigger endpoint."""

from __future__ import annotations

import sys

from certbind.api.auth import create_trigger_token


def run_token(config) -> int:
    trigger = config.settings.trigger
    if not trigger.token_secret:
        print("trigger.token_secret is not configured", file=sys.stderr)  # noqa: T201
        return 1

    print(create_trigger_token(trigger.token_secret))  # noqa: T201
    print(  # noqa: T201
        f"valid for {trigger.token_max_age_seconds} seconds; "
        f"send as 'Authorization: Bearer <token>' to {trigger.path}",
        file=sys.stderr,
    )
    return 0
