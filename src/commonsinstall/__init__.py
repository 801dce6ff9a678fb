"""
commons-install - Idempotent, resumable OpenSocial provisioning on DDEV.

Drives ddev, composer, drush and docker through a single command runner and
decides, step by step, whether each provisioning effect already exists.

Example usage:
    from commonsinstall import Orchestrator, build_steps, CommandRunner

    runner = CommandRunner()
    steps = build_steps(runner, settings, prompter)
    report = Orchestrator(steps).run(run_config)
    print(report.render())
"""

__version__ = "3.0.0"
__all__ = [
    "CommandRunner",
    "Orchestrator",
    "RunConfig",
    "RunReport",
    "build_steps",
    "__version__",
]


# Lazy imports to avoid loading click/pydantic at import time
def __getattr__(name: str):
    if name == "CommandRunner":
        from commonsinstall.runner import CommandRunner
        return CommandRunner
    if name == "Orchestrator":
        from commonsinstall.orchestrator import Orchestrator
        return Orchestrator
    if name == "RunConfig":
        from commonsinstall.models import RunConfig
        return RunConfig
    if name == "RunReport":
        from commonsinstall.report import RunReport
        return RunReport
    if name == "build_steps":
        from commonsinstall.steps import build_steps
        return build_steps
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
