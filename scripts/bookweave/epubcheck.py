"""
EPUB validation via epubcheck.

Locates epubcheck (env var, PATH, tools/ dir, or ~/), runs it with a
timeout, and turns its output into an EpubcheckReport.
"""

import os
import re
import shutil
import subprocess
from dataclasses import dataclass, field

from bookweave.errors import IOTimeout

SUMMARY = re.compile(r"Messages:\s*(\d+)\s*fatal.*?(\d+)\s*error.*?(\d+)\s*warn", re.DOTALL)
MESSAGE_PREFIXES = ("FATAL", "ERROR", "WARNING")


@dataclass
class EpubcheckReport:
    returncode: int
    fatals: int = 0
    errors: int = 0
    warnings: int = 0
    messages: list = field(default_factory=list)

    @property
    def valid(self):
        return self.returncode == 0 and self.fatals == 0 and self.errors == 0


def _jar_candidates():
    """Yield epubcheck.jar paths under tools/ and the home directory, newest first."""
    # scripts/bookweave/ → scripts/ → project root
    here = os.path.dirname(os.path.abspath(__file__))
    root = os.path.dirname(os.path.dirname(here))
    for base in (os.path.join(root, "tools"), os.path.join(root, "scripts", "tools"), os.path.expanduser("~")):
        if not os.path.isdir(base):
            continue
        for name in sorted((n for n in os.listdir(base) if n.startswith("epubcheck")), reverse=True):
            yield os.path.join(base, name, "epubcheck.jar")


def find_epubcheck():
    """
    Command that runs epubcheck, or None.

    $EPUBCHECK_JAR wins, then an `epubcheck` wrapper on PATH, then the
    newest epubcheck*/epubcheck.jar under tools/ or ~/.
    """
    jar = os.environ.get("EPUBCHECK_JAR")
    if jar and os.path.isfile(jar):
        return ["java", "-jar", jar]

    wrapper = shutil.which("epubcheck")
    if wrapper:
        return [wrapper]

    jar = next((path for path in _jar_candidates() if os.path.isfile(path)), None)
    return ["java", "-jar", jar] if jar else None


def parse_output(output, returncode):
    """Build a report from epubcheck's combined stdout/stderr."""
    report = EpubcheckReport(returncode=returncode)
    summary = SUMMARY.search(output)
    if summary:
        report.fatals, report.errors, report.warnings = (int(n) for n in summary.groups())
    report.messages = [line for line in output.splitlines() if line.startswith(MESSAGE_PREFIXES)]
    return report


def validate_epub(epub_path, verbose=False, json_report=None, timeout=None):
    """
    Run epubcheck on an epub file and print a one-line verdict.

    Returns an EpubcheckReport, or None if epubcheck is unavailable.
    Raises IOTimeout if epubcheck runs longer than `timeout` seconds.
    """
    cmd = find_epubcheck()
    if cmd is None:
        if verbose:
            print("  - epubcheck not found, EPUB left unvalidated")
            print("    Install it from your package manager,")
            print("    or point EPUBCHECK_JAR at epubcheck.jar")
        return None

    cmd = cmd + [epub_path]
    if json_report:
        if json_report is True:
            json_report = os.path.splitext(epub_path)[0] + ".epubcheck.json"
        cmd.extend(["--json", json_report])

    if verbose:
        print(f"  Running {os.path.basename(epub_path)} through epubcheck...")

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError:
        print(f"  ⚠ Could not start {cmd[0]}")
        return None
    except subprocess.TimeoutExpired:
        raise IOTimeout(f"epubcheck {os.path.basename(epub_path)}", timeout)

    report = parse_output(result.stdout + result.stderr, result.returncode)

    if report.valid and report.warnings == 0:
        print("  ✓ epubcheck: clean")
    elif report.valid:
        print(f"  ⚠ epubcheck: valid with {report.warnings} warning(s)")
    else:
        print(f"  ✗ epubcheck: {report.fatals} fatal, {report.errors} error(s), {report.warnings} warning(s)")

    if verbose or not report.valid:
        for line in report.messages:
            print(f"    {line}")

    if json_report and os.path.exists(json_report):
        print(f"  JSON report: {json_report}")

    return report
