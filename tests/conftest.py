import shlex

import pytest

from settled.context import RunContext
from settled.server.errors import CommandError
from settled.task.taskutil import MISSING_FILE_SENTINEL

# ----------------- Fake server -----------------

class FakeServer:
    """
    Scripted stand-in for a remote host.

    Rules match by substring; the most recently added matching rule wins.
    ``output`` may be a callable taking the command, so tests can model
    state that changes after an apply.
    """

    def __init__(self, name="web-1", address="10.0.0.5"):
        self._name = name
        self._address = address
        self.rules = []
        self.commands = []

    @property
    def id(self):
        return self._name

    @property
    def address(self):
        return self._address

    def on(self, match, output="", exit_status=0):
        self.rules.insert(0, (match, output, exit_status))
        return self

    def missing(self, path):
        """Answer reads of ``path`` as a missing file."""
        return self.on(f"if [ -f {shlex.quote(path)} ]", f"{MISSING_FILE_SENTINEL}:{path}")

    def file(self, path, content):
        return self.on(f"if [ -f {shlex.quote(path)} ]", content)

    def ran(self, match):
        return [c for c in self.commands if match in c]

    def execute(self, ctx, command):
        self.commands.append(command)
        for match, output, status in self.rules:
            if match in command:
                if callable(output):
                    output = output(command)
                if status != 0:
                    raise CommandError(
                        f"command failed with exit status {status}",
                        command=command,
                        output=output,
                        exit_status=status,
                    )
                return output
        raise AssertionError(f"unexpected command: {command}")


@pytest.fixture
def ctx():
    c = RunContext.background()
    yield c
    c.cancel()


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def root_server():
    s = FakeServer(name="root-box")
    s.on("id -u", "0\n")
    s.on("id -un", "root\n")
    return s


@pytest.fixture
def user_server():
    s = FakeServer(name="user-box")
    s.on("id -u", "1000\n")
    s.on("id -un", "deploy\n")
    return s


@pytest.fixture
def make_server():
    return FakeServer
