# graphci_pipeline.py
# Pipeline for graphci itself: build the wheel, test it, publish on main.
# Run with: graphci run --config graphci_pipeline.py
from __future__ import annotations

from graphci import (
    attach_workspace,
    checkout,
    job,
    persist_to_workspace,
    pipeline as make_pipeline,
    run,
    store_artifacts,
    store_test_results,
    use,
    workflow,
)


def pipeline():
    build = job(
        "build",
        checkout(),
        run("Build wheel", "python -m pip wheel -q --no-deps -w dist ."),
        persist_to_workspace(".", ["dist"]),
        store_artifacts("dist", "wheels"),
    )

    test = job(
        "test",
        checkout(),
        attach_workspace("~/wheels"),
        run("Install wheel", "python -m venv ~/venv && ~/venv/bin/pip install -q ~/wheels/dist/*.whl pytest"),
        run("Run pytest", "mkdir -p ~/test-results && ~/venv/bin/pytest -q --junitxml ~/test-results/junit.xml"),
        store_test_results("~/test-results"),
    )

    publish = job(
        "publish",
        attach_workspace("~/wheels"),
        run("List release files", "ls -l ~/wheels/dist"),
    )

    return make_pipeline(
        [build, test, publish],
        [
            workflow(
                "ci",
                use(build),
                use(test, requires=["build"]),
                use(publish, requires=["test"], only=["main", "/release-.*/"]),
            )
        ],
    )
