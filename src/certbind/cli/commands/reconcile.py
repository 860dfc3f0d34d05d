"""``run`` and ``plan`` subcommands.

Usage::

    certbind -c config.yaml run     # issue and renew, print the report
    certbind -c config.yaml plan    # list what would be done
"""

from __future__ import annotations

import logging
import sys

from certbind.core.errors import RegistryError
from certbind.core.types import Action
from certbind.services.hints import with_hint

log = logging.getLogger(__name__)


def _build(config, database=None):
    from certbind.app.context import build_container  # noqa: PLC0415

    return build_container(config.settings, database=database)


def run_reconcile(config, database=None) -> int:
    """Run one reconciliation; returns the process exit code.

    Refuses to run with the in-memory challenge store: the CA fetches
    challenge responses from the serving process, which cannot see
    values published in this one.
    """
    if config.settings.challenges.store.backend == "memory":
        print(  # noqa: T201
            "certbind run needs challenges.store.backend 'database' so the "
            "server can answer the CA's challenge fetch; with the memory store, "
            "trigger the run through the server's trigger endpoint instead",
            file=sys.stderr,
        )
        return 1

    container = _build(config, database)
    container.shutdown.register_signals()

    try:
        report = container.run_reconciliation()
    except RegistryError as exc:
        print(with_hint(str(exc), container.engine.hint(exc)), file=sys.stderr)  # noqa: T201
        return 1

    sys.stdout.write(report.render())
    return 0 if report.ok else 1


def run_plan(config) -> int:
    """Print the plan without issuing anything; returns the exit code."""
    container = _build(config)

    try:
        the_plan = container.engine.plan()
    except RegistryError as exc:
        print(with_hint(str(exc), container.engine.hint(exc)), file=sys.stderr)  # noqa: T201
        return 1

    print(f"Custom domains ({len(the_plan.domains)}):")  # noqa: T201
    for item in the_plan.domains:
        verb = "issue" if item.action == Action.ISSUE else "keep"
        print(f"  {verb:6} {item.domain}  ({item.reason})")  # noqa: T201

    print(f"Certificates ({len(the_plan.certificates)}):")  # noqa: T201
    for item in the_plan.certificates:
        verb = "renew" if item.action == Action.RENEW else "keep"
        expires = item.expire_time.isoformat() if item.expire_time else "unknown"
        name = item.domain or "-"
        print(f"  {verb:6} {name}  id={item.certificate_id} expires={expires}  ({item.reason})")  # noqa: T201

    print(  # noqa: T201
        f"{len(the_plan.issue)} to issue, {len(the_plan.renew)} to renew, "
        f"{len(the_plan.skipped)} up to date",
    )
    return 0
