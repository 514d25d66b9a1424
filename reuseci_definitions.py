# reuseci_definitions.py
# Pipeline for ReuseCI itself, built from shared bundles.
#   reuseci publish reuseci_definitions.py
#   reuseci run reuseci/self-ci@v1 -i python=python3
from __future__ import annotations

from reuseci.dsl import bundle, definition, job, param, sh, uses, wf


def definitions():
    return wf(
        bundle(
            "reuseci/setup-python@v1",
            sh("Show interpreter", "${{ inputs.python }} --version"),
            sh("Install package", "${{ inputs.python }} -m pip install -e '.[test]'"),
            inputs={"python": param(default="python")},
            description="Install the project into the current interpreter",
        ),
        bundle(
            "reuseci/pytest@v1",
            uses("reuseci/setup-python@v1", name="setup", python="${{ inputs.python }}"),
            sh("Run pytest", "${{ inputs.python }} -m pytest ${{ inputs.args }}"),
            inputs={"python": param(default="python"), "args": param(default="-q")},
        ),
        definition(
            "reuseci/self-ci@v1",
            job("lint", sh("Ruff check", "ruff check src tests || echo 'ruff not available, skipping'")),
            job(
                "test",
                uses("reuseci/pytest@v1", name="pytest", python="${{ inputs.python }}"),
                needs=["lint"],
                timeout=600,
            ),
            job(
                "report",
                sh("Summary", "echo 'self-ci finished'"),
                needs=["test"],
                condition="always",
            ),
            inputs={"python": param(default="python3")},
            description="Lint and test ReuseCI",
        ),
    )
