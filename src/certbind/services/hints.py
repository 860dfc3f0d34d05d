"""Remediation hints for recognisable registry errors.

A fixed pattern -> hint table matched against an error's text.  Hints
are only ever displayed next to the error; they never change which
error is raised or what the run does next.
"""

from __future__ import annotations

from dataclasses import dataclass

_UNKNOWN_ACCOUNT = "n/a"


@dataclass(frozen=True)
class _Hint:
    patterns: tuple[str, ...]
    template: str


_HINTS: tuple[_Hint, ...] = (
    _Hint(
        patterns=(
            "Quota configuration not found",
            "Google App Engine Admin API has not been used",
        ),
        template=(
            "enable Google App Engine Admin API on "
            "https://console.cloud.google.com/apis/api/appengine.googleapis.com/overview"
            "?project={project}"
        ),
    ),
    _Hint(
        patterns=("Operation not allowed, forbidden",),
        template=(
            "add AppEngine default service account ({service_account}) to role "
            "App Engine Admin "
            "https://console.cloud.google.com/iam-admin/iam/project?project={project}"
        ),
    ),
    _Hint(
        patterns=("Caller is not authorized to administer this certificate",),
        template=(
            "add AppEngine default service account ({service_account}) as verified "
            "owner for the domain "
            "https://www.google.com/webmasters/verification/details"
        ),
    ),
)


def hint_for(
    error: BaseException | str,
    *,
    project: str | None = None,
    service_account: str | None = None,
) -> str | None:
    """Return the remediation hint for *error*, or ``None`` if none matches."""
    text = str(error)
    for hint in _HINTS:
        if any(pattern in text for pattern in hint.patterns):
            return hint.template.format(
                project=project or "",
                service_account=service_account or _UNKNOWN_ACCOUNT,
            )
    return None


def with_hint(message: str, hint: str | None) -> str:
    """Append ``Tip: <hint>`` to *message* when there is a hint."""
    if not hint:
        return message
    return f"{message}\nTip: {hint}"
