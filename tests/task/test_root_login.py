import pytest

from settled.sshd import config as sshd
from settled.task.planner import plan_tasks
from settled.task.rootlogin import root_login
from settled.task.rootlogin.root_login import DisableRootLoginTask, root_login_disabled

CONFIG = "/etc/ssh/sshd_config"


def test_enabled_by_default():
    plan = plan_tasks({}, [root_login.spec()])
    assert [t.name for t in plan.tasks] == ["disable root login"]


def test_disable_false_builds_nothing():
    assert plan_tasks({"root_login": {"disable": False}}, [root_login.spec()]).tasks == []


def test_typo_is_reported():
    plan = plan_tasks({"root_login": {"disabel": False}}, [root_login.spec()])
    assert plan.unknown == ["root_login.disabel"]


@pytest.mark.parametrize(
    "content,expected",
    [
        ("PermitRootLogin no\n", True),
        ("permitrootlogin NO\n", True),
        ("PermitRootLogin yes\n", False),
        ("#PermitRootLogin no\n", False),
        ("", False),
        ("PermitRootLogin no\nPermitRootLogin yes\n", False),
    ],
)
def test_root_login_disabled(content, expected):
    assert root_login_disabled(content) is expected


def test_skipped_when_connected_as_root(ctx, root_server):
    task = DisableRootLoginTask()
    assert task.needs_execution(ctx, root_server) is False
    assert root_server.commands == ["id -un"]


def test_needs_execution_caches_config_path(ctx, user_server):
    user_server.file(CONFIG, "PermitRootLogin yes\n")
    task = DisableRootLoginTask()
    assert task.needs_execution(ctx, user_server) is True
    assert task.config_path == CONFIG


def test_already_disabled(ctx, user_server):
    user_server.file(CONFIG, "Port 22\nPermitRootLogin no\n")
    assert DisableRootLoginTask().needs_execution(ctx, user_server) is False


def test_missing_sshd_config_is_an_error(ctx, user_server):
    user_server.missing(CONFIG)
    with pytest.raises(RuntimeError, match="sshd config not found"):
        DisableRootLoginTask().needs_execution(ctx, user_server)


def test_execute_sets_option_with_sudo(ctx, user_server):
    user_server.file(CONFIG, "PermitRootLogin yes\n")
    user_server.on("sshd_bin", "")

    task = DisableRootLoginTask()
    task.execute(ctx, user_server)

    [cmd] = user_server.ran("sshd_bin")
    assert cmd.startswith("sudo -n sh -c ")
    assert "PermitRootLogin" in cmd
    assert task.config_path == CONFIG


def test_set_options_script():
    script = sshd.render_set_options(CONFIG, [("PermitRootLogin", "no")])
    assert "config=/etc/ssh/sshd_config" in script
    assert "printf '%s %s\\n' PermitRootLogin no" in script
    assert "grep -Eiv '^[[:space:]]*(PermitRootLogin)([[:space:]]|=)' \"$config\"" in script
    assert '"$sshd_bin" -t -f "$config"' in script
    assert 'cat "$backup" > "$config"' in script


def test_converges(ctx, user_server):
    state = {"content": "PermitRootLogin yes\n"}

    def apply(_cmd):
        state["content"] = "PermitRootLogin no\n"
        return ""

    user_server.on(f"if [ -f {CONFIG} ]", lambda _cmd: state["content"])
    user_server.on("sshd_bin", apply)

    task = DisableRootLoginTask()
    assert task.needs_execution(ctx, user_server) is True
    task.execute(ctx, user_server)
    assert DisableRootLoginTask().needs_execution(ctx, user_server) is False
