"""Health checks for the mpm doctor command.

The doctor is read-only. It cross-checks the manifest, the lockfile and the
plugins directory and reports severity-classified findings; the report's
severity is the highest finding severity and maps directly to the exit code.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Optional

import structlog

from mpm.core.errors import LockfileNotFound, ManifestNotFound, ParseError
from mpm.core.lockfile import Lockfile
from mpm.core.manifest import Manifest, SourceKind
from mpm.core.sync import DirectoryState

log = structlog.get_logger()

SCHEMA_VERSION = 1


class Severity(IntEnum):
    """Finding severity. The value doubles as the doctor exit code."""

    INFO = 0
    WARNING = 1
    ERROR = 2

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class HealthFinding:
    """A single health check result.

    Attributes:
        severity: How serious the finding is
        code: Stable kebab-case identifier (e.g. "hash-mismatch")
        subject: Plugin name, file name or path the finding is about
        message: Human-readable explanation
    """

    severity: Severity
    code: str
    subject: str
    message: str

    def to_dict(self) -> dict:
        return {
            "severity": self.severity.label,
            "code": self.code,
            "subject": self.subject,
            "message": self.message,
        }


@dataclass
class HealthReport:
    """Ordered findings plus the derived overall severity."""

    findings: list[HealthFinding] = field(default_factory=list)

    def __post_init__(self):
        self.findings = sorted(self.findings, key=lambda f: (f.code, f.subject, f.message))

    @property
    def severity(self) -> Severity:
        return max((f.severity for f in self.findings), default=Severity.INFO)

    @property
    def exit_code(self) -> int:
        """0 healthy, 1 warnings only, 2 any error."""
        return int(self.severity)

    @property
    def status(self) -> str:
        return {Severity.INFO: "ok", Severity.WARNING: "warning", Severity.ERROR: "error"}[
            self.severity
        ]

    def count(self, severity: Severity) -> int:
        return sum(1 for f in self.findings if f.severity is severity)

    def summary(self) -> dict:
        return {
            "errors": self.count(Severity.ERROR),
            "warnings": self.count(Severity.WARNING),
            "info": self.count(Severity.INFO),
        }

    def to_dict(self) -> dict:
        return {
            "schema_version": SCHEMA_VERSION,
            "status": self.status,
            "exit_code": self.exit_code,
            "summary": self.summary(),
            "findings": [f.to_dict() for f in self.findings],
        }


def audit(manifest: Manifest, lockfile: Lockfile, state: DirectoryState) -> HealthReport:
    """Cross-check manifest, lockfile and plugins directory.

    Args:
        manifest: Parsed manifest
        lockfile: Parsed lockfile
        state: Observed plugins directory

    Returns:
        HealthReport with all findings
    """
    findings = []
    locked = {p.name: p for p in lockfile.plugins}

    for requirement in manifest.sorted_requirements():
        entry = locked.get(requirement.name)
        if entry is None:
            findings.append(HealthFinding(
                Severity.ERROR,
                "missing-lock-entry",
                requirement.name,
                f"'{requirement.name}' is in the manifest but not in the lockfile; run 'mpm lock'",
            ))
            continue

        drift = []
        if requirement.version is not None and requirement.version != entry.version:
            drift.append(f"version {requirement.version} requested, {entry.version} locked")
        if requirement.source is not None and requirement.source is not entry.source:
            drift.append(
                f"source {requirement.source.value} requested, {entry.source.value} locked"
            )
        if drift:
            findings.append(HealthFinding(
                Severity.WARNING,
                "stale-lock-entry",
                requirement.name,
                f"Manifest changed since the last lock ({'; '.join(drift)}); run 'mpm lock'",
            ))

    for entry in lockfile.plugins:
        if entry.name not in manifest.requirements:
            findings.append(HealthFinding(
                Severity.WARNING,
                "orphaned-lock-entry",
                entry.name,
                f"'{entry.name}' is locked but no longer in the manifest; run 'mpm lock'",
            ))
        if entry.source is SourceKind.GITHUB:
            findings.append(HealthFinding(
                Severity.INFO,
                "unverified-compatibility",
                entry.name,
                f"GitHub releases declare no Minecraft versions; "
                f"{entry.version} was not checked against {manifest.runtime_version}",
            ))

    if not state.exists:
        if lockfile.plugins:
            findings.append(HealthFinding(
                Severity.ERROR,
                "plugins-dir-missing",
                str(state.root),
                f"Plugins directory {state.root} does not exist; run 'mpm sync'",
            ))
        return HealthReport(findings)

    for entry in lockfile.plugins:
        if entry.file_name not in state.file_names:
            findings.append(HealthFinding(
                Severity.ERROR,
                "missing-file",
                entry.name,
                f"{entry.file_name} is locked but not present; run 'mpm sync'",
            ))
            continue
        actual = state.hash_of(entry.file_name, entry.content_hash.algorithm)
        if actual != entry.content_hash:
            findings.append(HealthFinding(
                Severity.ERROR,
                "hash-mismatch",
                entry.name,
                f"{entry.file_name} has hash {actual}, expected {entry.content_hash}; "
                f"run 'mpm sync'",
            ))

    managed = lockfile.file_names
    for file_name in sorted(state.file_names - managed):
        findings.append(HealthFinding(
            Severity.WARNING,
            "unmanaged-file",
            file_name,
            f"{file_name} is not in the lockfile; 'mpm sync' will remove it",
        ))

    return HealthReport(findings)


def check_manifest(path: Path) -> tuple[Optional[Manifest], Optional[HealthFinding]]:
    """Check that the manifest exists and parses."""
    try:
        return Manifest.load(path), None
    except ManifestNotFound:
        return None, HealthFinding(
            Severity.ERROR, "manifest-missing", str(path), f"{path} not found; run 'mpm init'"
        )
    except ParseError as e:
        return None, HealthFinding(Severity.ERROR, "manifest-invalid", str(path), e.message)


def check_lockfile(path: Path) -> tuple[Optional[Lockfile], Optional[HealthFinding]]:
    """Check that the lockfile exists and parses."""
    try:
        return Lockfile.load(path), None
    except LockfileNotFound:
        return None, HealthFinding(
            Severity.ERROR, "lockfile-missing", str(path), f"{path} not found; run 'mpm lock'"
        )
    except ParseError as e:
        return None, HealthFinding(Severity.ERROR, "lockfile-invalid", str(path), e.message)


def run_doctor(manifest_path: Path, lockfile_path: Path, plugins_dir: Path) -> HealthReport:
    """Check all three surfaces, then audit whatever could be loaded.

    A missing or unparsable manifest or lockfile is itself an error finding;
    the audit then runs against an empty stand-in so the remaining surfaces
    are still checked.
    """
    findings = []
    manifest, problem = check_manifest(manifest_path)
    if problem:
        findings.append(problem)
    lockfile, problem = check_lockfile(lockfile_path)
    if problem:
        findings.append(problem)

    state = DirectoryState.scan(plugins_dir)
    report = audit(
        manifest or Manifest(runtime_version=""),
        lockfile or Lockfile(),
        state,
    )
    report = HealthReport(findings + report.findings)
    log.info(
        "doctor_completed",
        status=report.status,
        errors=report.count(Severity.ERROR),
        warnings=report.count(Severity.WARNING),
    )
    return report
