"""Test helpers for netpol-gitops tools."""

from netpol_gitops.command import Command, run

NETPOL_GITOPS_BIN = "netpol-gitops"


async def run_command(args: list[str], env: dict[str, str] | None = None) -> str:
    return await run(Command([NETPOL_GITOPS_BIN] + args, env=env))
