"""
Each gateway package must import on its own, in a fresh interpreter.
"""

import os
import subprocess
import sys
from pathlib import Path

import pytest


REPO_ROOT = Path(__file__).resolve().parents[2]


@pytest.mark.parametrize(
    "module",
    [
        "service_analytics_gateway.app.stores",
        "service_analytics_gateway.app.domain",
        "service_analytics_gateway.app.domain.resolver",
        "service_analytics_gateway.app.adapters",
        "service_analytics_gateway.app.caching",
        "service_analytics_gateway.app.identity",
        "service_analytics_gateway.app.main",
    ],
)
def test_module_imports_standalone(module):
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(REPO_ROOT), env.get("PYTHONPATH")]))

    result = subprocess.run(
        [sys.executable, "-c", f"import {module}"],
        cwd=str(REPO_ROOT),
        env=env,
        capture_output=True,
        text=True,
    )

    assert result.returncode == 0, result.stderr
