"""Tests for command library."""

import pytest

from netpol_gitops.command import Command, run
from netpol_gitops.exceptions import CommandException, GitException


async def test_command() -> None:
    """Test stdout parsing of a command."""
    result = await run(Command(["echo", "Hello"]))
    assert result == "Hello\n"


async def test_command_env() -> None:
    """Test that environment variables are added to the inherited environment."""
    result = await run(
        Command(["sh", "-c", 'echo "$GREETING ${PATH:+path}"'], env={"GREETING": "Hi"})
    )
    assert result == "Hi path\n"


async def test_failed_command() -> None:
    """Test a failing command."""
    with pytest.raises(CommandException, match="return code 1"):
        await run(Command(["/bin/false"]))


async def test_failed_command_output() -> None:
    """Test that the error includes the command output and exception type."""
    with pytest.raises(GitException, match="boom"):
        await run(Command(["sh", "-c", "echo boom >&2; exit 3"], exc=GitException))


async def test_timeout() -> None:
    """Test a command killed after its timeout."""
    with pytest.raises(CommandException, match="timed out"):
        await run(Command(["sleep", "5"], timeout=0.1))
