"""Reconciliation of the registry against what should be issued.

One run:

1. lists domain mappings and certificates from the registry,
2. issues a certificate for every domain with no binding and binds it,
3. renews every certificate expiring within the renewal window, in place.

Work is strictly sequential: all issuances first, then all renewals,
each group in registry listing order.  A failure is recorded against
its domain and the run moves on; the registry is written to only after
a fully successful issuance.  Listing failures abort the run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Protocol

from certbind.core.errors import CancellationError, CertbindError, RegistryError, UnexpectedError
from certbind.core.types import Action, OutcomeStatus
from certbind.logging import audit
from certbind.logging.setup import domain_context
from certbind.services.hints import hint_for, with_hint

if TYPE_CHECKING:
    import threading
    from collections.abc import Callable, Sequence

    from certbind.config.settings import RenewalSettings
    from certbind.issuance.csr import IssuedCertificate
    from certbind.registry.base import CertificateRecord, CertificateRegistry, DomainRecord

log = logging.getLogger(__name__)


class CertificateIssuer(Protocol):
    def obtain_certificate(
        self,
        domain: str,
        cancel: threading.Event | None = None,
    ) -> IssuedCertificate: ...


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PlannedItem:
    """One row of the plan: a domain mapping or a certificate.

    ``position`` is the row's index in its registry listing.
    """

    position: int
    domain: str
    action: Action
    certificate_id: str | None = None
    expire_time: datetime | None = None
    reason: str = ""


@dataclass(frozen=True)
class ReconciliationPlan:
    """What a run will do, in listing order."""

    domains: tuple[PlannedItem, ...]
    certificates: tuple[PlannedItem, ...]

    @property
    def issue(self) -> tuple[PlannedItem, ...]:
        return tuple(i for i in self.domains if i.action == Action.ISSUE)

    @property
    def renew(self) -> tuple[PlannedItem, ...]:
        return tuple(i for i in self.certificates if i.action == Action.RENEW)

    @property
    def skipped(self) -> tuple[PlannedItem, ...]:
        return tuple(i for i in (*self.domains, *self.certificates) if i.action == Action.NONE)


def plan(
    domains: Sequence[DomainRecord],
    certificates: Sequence[CertificateRecord],
    now: datetime,
    renew_before: timedelta,
) -> ReconciliationPlan:
    """Decide what to issue and renew.  Pure: no I/O, no clock.

    A certificate is renewed when ``expire_time <= now + renew_before``.
    """
    deadline = now + renew_before

    domain_items = []
    for position, record in enumerate(domains):
        if record.is_bound:
            domain_items.append(
                PlannedItem(
                    position=position,
                    domain=record.domain,
                    action=Action.NONE,
                    certificate_id=record.certificate_id,
                    reason="has certificate",
                ),
            )
        else:
            domain_items.append(
                PlannedItem(
                    position=position,
                    domain=record.domain,
                    action=Action.ISSUE,
                    reason="no certificate",
                ),
            )

    certificate_items = []
    for position, cert in enumerate(certificates):
        due = cert.expire_time <= deadline
        certificate_items.append(
            PlannedItem(
                position=position,
                domain=cert.domain or "",
                action=Action.RENEW if due else Action.NONE,
                certificate_id=cert.id,
                expire_time=cert.expire_time,
                reason="within renewal window" if due else "not yet due",
            ),
        )

    return ReconciliationPlan(
        domains=tuple(domain_items),
        certificates=tuple(certificate_items),
    )


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DomainOutcome:
    """Result of one plan row."""

    domain: str
    action: Action
    status: OutcomeStatus
    certificate_id: str | None = None
    expire_time: datetime | None = None
    error: CertbindError | None = None
    hint: str | None = None

    @property
    def message(self) -> str:
        if self.error is None:
            return ""
        return with_hint(f"{self.error.kind}: {self.error}", self.hint)


def _fmt_time(value: datetime | None) -> str:
    if value is None:
        return "unknown"
    return value.astimezone(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")


@dataclass
class Report:
    """Outcome of one reconciliation run, in listing order per section."""

    domain_outcomes: list[DomainOutcome] = field(default_factory=list)
    certificate_outcomes: list[DomainOutcome] = field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def outcomes(self) -> list[DomainOutcome]:
        return [*self.domain_outcomes, *self.certificate_outcomes]

    @property
    def failures(self) -> list[DomainOutcome]:
        return [
            o
            for o in self.outcomes
            if o.status in (OutcomeStatus.FAILED, OutcomeStatus.CANCELLED)
        ]

    @property
    def succeeded(self) -> list[DomainOutcome]:
        return [o for o in self.outcomes if o.status == OutcomeStatus.SUCCEEDED]

    @property
    def ok(self) -> bool:
        return not self.failures

    def render(self) -> str:
        """Plain-text progress report, as returned by the trigger endpoint."""
        lines = [f"Found {len(self.domain_outcomes)} custom domains:"]
        for o in self.domain_outcomes:
            if o.action == Action.NONE:
                lines.append(f" - {o.domain}: has certificate, nothing to do")
                continue
            lines.append(f" - {o.domain}: no certificate, creating")
            lines.extend(self._result_lines(o, "created and bound certificate"))
        lines.append("")

        lines.append(f"Found {len(self.certificate_outcomes)} certificates:")
        for o in self.certificate_outcomes:
            name = o.domain or f"certificate {o.certificate_id}"
            expires = _fmt_time(o.expire_time)
            if o.action == Action.NONE:
                lines.append(f" - {name}: expires on {expires}, nothing to do")
                continue
            lines.append(f" - {name}: expires on {expires}, updating")
            lines.extend(self._result_lines(o, "updated certificate"))
        lines.append("")

        failed = sum(1 for o in self.outcomes if o.status == OutcomeStatus.FAILED)
        cancelled = sum(1 for o in self.outcomes if o.status == OutcomeStatus.CANCELLED)
        lines.append(f"{len(self.succeeded)} succeeded, {failed} failed, {cancelled} cancelled")
        return "\n".join(lines) + "\n"

    @staticmethod
    def _result_lines(outcome: DomainOutcome, success: str) -> list[str]:
        if outcome.status == OutcomeStatus.SUCCEEDED:
            return [f"   {success} {outcome.certificate_id}"]
        label = "cancelled" if outcome.status == OutcomeStatus.CANCELLED else "failed"
        first, *rest = outcome.message.splitlines() or [""]
        return [f"   {label}: {first}", *(f"   {line}" for line in rest)]


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ReconciliationEngine:
    """Applies a :class:`ReconciliationPlan` through an issuer and a registry.

    Parameters
    ----------
    issuer:
        Obtains certificates (normally :class:`~certbind.services.issuance.IssuanceFlow`).
    registry:
        Where certificates are listed, created, bound and updated.
    renewal:
        ``renewal`` settings (renewal window).

    """

    def __init__(
        self,
        issuer: CertificateIssuer,
        registry: CertificateRegistry,
        renewal: RenewalSettings,
    ) -> None:
        self._issuer = issuer
        self._registry = registry
        self._renew_before = timedelta(days=renewal.renew_before_days)

    @property
    def renew_before(self) -> timedelta:
        return self._renew_before

    def hint(self, error: BaseException) -> str | None:
        """Remediation hint for *error*; only looks up the account on a match."""
        if hint_for(error) is None:
            return None
        return hint_for(
            error,
            project=self._registry.project_id(),
            service_account=self._registry.service_account(),
        )

    def plan(self, now: datetime | None = None) -> ReconciliationPlan:
        """List the registry and return the plan without acting on it."""
        domains, certificates = self._list()
        return plan(domains, certificates, now or datetime.now(UTC), self._renew_before)

    def run(
        self,
        now: datetime | None = None,
        cancel: threading.Event | None = None,
    ) -> Report:
        """List the registry, then :meth:`reconcile`.

        Raises
        ------
        RegistryError
            If either listing fails; nothing has been attempted yet.

        """
        domains, certificates = self._list()
        return self.reconcile(domains, certificates, now or datetime.now(UTC), cancel)

    def _list(self) -> tuple[list[DomainRecord], list[CertificateRecord]]:
        domains = self._registry.list_domains()
        certificates = self._registry.list_certificates()
        log.info("Registry lists %d domains and %d certificates", len(domains), len(certificates))
        return domains, certificates

    def reconcile(
        self,
        domains: Sequence[DomainRecord],
        certificates: Sequence[CertificateRecord],
        now: datetime,
        cancel: threading.Event | None = None,
    ) -> Report:
        """Issue and renew as planned; record one outcome per plan row."""
        report = Report(started_at=datetime.now(UTC))
        the_plan = plan(domains, certificates, now, self._renew_before)
        log.info(
            "Reconciliation plan: %d to issue, %d to renew, %d up to date",
            len(the_plan.issue),
            len(the_plan.renew),
            len(the_plan.skipped),
        )

        results: dict[PlannedItem, DomainOutcome] = {}
        for item in the_plan.issue:
            results[item] = self._attempt(item, cancel, self._issue)
        for item in the_plan.renew:
            results[item] = self._attempt(item, cancel, self._renew)

        report.domain_outcomes = [results.get(i) or self._skipped(i) for i in the_plan.domains]
        report.certificate_outcomes = [
            results.get(i) or self._skipped(i) for i in the_plan.certificates
        ]
        report.finished_at = datetime.now(UTC)

        log.info(
            "Reconciliation finished: %d succeeded, %d failed",
            len(report.succeeded),
            len(report.failures),
        )
        return report

    # -- per-item -----------------------------------------------------------

    @staticmethod
    def _skipped(item: PlannedItem) -> DomainOutcome:
        return DomainOutcome(
            domain=item.domain,
            action=Action.NONE,
            status=OutcomeStatus.SKIPPED,
            certificate_id=item.certificate_id,
            expire_time=item.expire_time,
        )

    def _attempt(
        self,
        item: PlannedItem,
        cancel: threading.Event | None,
        step: Callable[[PlannedItem, threading.Event | None], DomainOutcome],
    ) -> DomainOutcome:
        if cancel is not None and cancel.is_set():
            exc = CancellationError("run cancelled before this item started", domain=item.domain)
            return self._outcome(item, OutcomeStatus.CANCELLED, error=exc)

        with domain_context(item.domain or "-"):
            try:
                return step(item, cancel)
            except CancellationError as exc:
                log.warning("Cancelled %s for %s", item.action, item.domain)
                return self._outcome(item, OutcomeStatus.CANCELLED, error=exc)
            except CertbindError as exc:
                if exc.domain is None and item.domain:
                    exc.domain = item.domain
                hint = self.hint(exc)
                log.error("Could not %s certificate for %s: %s", item.action, item.domain, exc)
                audit.issuance_failed(item.domain, item.action, exc.kind, str(exc))
                return self._outcome(item, OutcomeStatus.FAILED, error=exc, hint=hint)
            except Exception as exc:  # noqa: BLE001
                log.exception("Unexpected error during %s for %s", item.action, item.domain)
                error = UnexpectedError(f"{type(exc).__name__}: {exc}", domain=item.domain or None)
                error.__cause__ = exc
                audit.issuance_failed(item.domain, item.action, error.kind, str(error))
                return self._outcome(item, OutcomeStatus.FAILED, error=error)

    def _issue(self, item: PlannedItem, cancel: threading.Event | None) -> DomainOutcome:
        log.info("%s: no certificate, creating", item.domain)
        issued = self._issuer.obtain_certificate(item.domain, cancel=cancel)
        certificate_id = self._registry.create_certificate(
            item.domain,
            issued.certificate_pem,
            issued.private_key_pem,
        )
        self._registry.bind_certificate(item.domain, certificate_id)
        audit.certificate_issued(item.domain, certificate_id, issued.not_after)
        return self._outcome(
            item,
            OutcomeStatus.SUCCEEDED,
            certificate_id=certificate_id,
            expire_time=issued.not_after,
        )

    def _renew(self, item: PlannedItem, cancel: threading.Event | None) -> DomainOutcome:
        if not item.domain:
            msg = f"certificate {item.certificate_id} lists no domain name"
            raise RegistryError(msg, operation="list_certificates")
        log.info(
            "%s: expires on %s, updating",
            item.domain,
            _fmt_time(item.expire_time),
        )
        issued = self._issuer.obtain_certificate(item.domain, cancel=cancel)
        self._registry.update_certificate(
            item.certificate_id,
            issued.certificate_pem,
            issued.private_key_pem,
        )
        audit.certificate_renewed(item.domain, item.certificate_id, issued.not_after)
        return self._outcome(
            item,
            OutcomeStatus.SUCCEEDED,
            certificate_id=item.certificate_id,
            expire_time=issued.not_after,
        )

    @staticmethod
    def _outcome(
        item: PlannedItem,
        status: OutcomeStatus,
        *,
        certificate_id: str | None = None,
        expire_time: datetime | None = None,
        error: CertbindError | None = None,
        hint: str | None = None,
    ) -> DomainOutcome:
        return DomainOutcome(
            domain=item.domain,
            action=item.action,
            status=status,
            certificate_id=certificate_id or item.certificate_id,
            expire_time=expire_time or item.expire_time,
            error=error,
            hint=hint,
        )
