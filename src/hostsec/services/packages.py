"""APT package management.

Installs only the packages that are not already present. Failure to
install a required package is fatal; optional packages are best-effort.
"""

from typing import Optional

from hostsec.core.context import ExecutionContext
from hostsec.core.executor import CommandExecutor
from hostsec.core.exceptions import ExecutionError, PackageError
from hostsec.core.reconcile import StageReport


APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}

# dpkg-query status for a fully installed package
INSTALLED_STATUS = "install ok installed"

APT_TIMEOUT = 900


class AptService:
    """Install-if-missing interface over apt and dpkg."""

    def __init__(self, ctx: ExecutionContext, executor: CommandExecutor) -> None:
        self.ctx = ctx
        self.executor = executor
        self._cache_updated = False

    def is_installed(self, package: str) -> bool:
        """Check if a package is installed according to dpkg."""
        result = self.executor.run(
            ["dpkg-query", "-W", "-f=${Status}", package],
            check=False,
            mutating=False,
        )
        return result.success and result.stdout.strip().endswith(INSTALLED_STATUS)

    def missing(self, packages: list[str]) -> list[str]:
        """Return the packages that are not installed, in the given order."""
        return [pkg for pkg in packages if not self.is_installed(pkg)]

    def update_cache(self) -> None:
        """Refresh the apt package index once per run.

        Raises:
            PackageError: If apt-get update fails
        """
        if self._cache_updated:
            return

        try:
            self.executor.run(
                ["apt-get", "update", "-qq"],
                description="Updating apt cache",
                env=APT_ENV,
                timeout=APT_TIMEOUT,
            )
        except ExecutionError as e:
            raise PackageError(
                "Failed to update apt cache",
                hint="Check network access and /etc/apt/sources.list",
                details=e.details,
            ) from e
        self._cache_updated = True

    def install(self, packages: list[str]) -> None:
        """Install packages unconditionally.

        Raises:
            PackageError: If apt-get install fails
        """
        try:
            self.executor.run(
                ["apt-get", "install", "-y", "-qq", "--no-install-recommends", *packages],
                description=f"Installing {', '.join(packages)}",
                env=APT_ENV,
                timeout=APT_TIMEOUT,
            )
        except ExecutionError as e:
            raise PackageError(
                f"Failed to install {', '.join(packages)}",
                packages=packages,
                hint="Run 'apt-get install' manually to see the full error",
                details=e.details,
            ) from e

    def ensure(
        self,
        packages: list[str],
        *,
        update_cache: bool = True,
        report: Optional[StageReport] = None,
    ) -> list[str]:
        """Install the packages that are missing.

        Args:
            packages: Required package names
            update_cache: Refresh the apt index before installing
            report: Stage report to record changes on

        Returns:
            The packages that were installed

        Raises:
            PackageError: If the cache update or installation fails
        """
        to_install = self.missing(packages)
        if not to_install:
            self.ctx.console.verbose(f"Already installed: {', '.join(packages)}")
            return []

        if update_cache:
            self.update_cache()
        self.install(to_install)

        if report is not None:
            for pkg in to_install:
                report.record(f"package {pkg}", "installed")
        return to_install

    def ensure_optional(
        self,
        packages: list[str],
        *,
        update_cache: bool = True,
        report: Optional[StageReport] = None,
    ) -> bool:
        """Best-effort variant of ensure(); failures become warnings.

        Returns:
            True if all packages are present afterwards
        """
        try:
            self.ensure(packages, update_cache=update_cache, report=report)
        except PackageError as e:
            self.ctx.console.warn(f"Optional packages not installed: {e.message}")
            if report is not None:
                report.warn(f"optional packages not installed: {', '.join(packages)}")
            return False
        return True
