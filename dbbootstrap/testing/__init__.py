"""
Test-suite collaborators: the retrying setup harness and the teardown
coordinator. Not part of the production bootstrap path.

The pytest plugin lives in `dbbootstrap.testing.plugin` and is not imported
here, so importing this package does not require pytest.
"""

from dbbootstrap.testing.harness import (
    HarnessState,
    RetryingSetupHarness,
    RetryState,
    SetupResult,
)
from dbbootstrap.testing.teardown import TeardownCoordinator

__all__ = [
    "HarnessState",
    "RetryState",
    "RetryingSetupHarness",
    "SetupResult",
    "TeardownCoordinator",
]
