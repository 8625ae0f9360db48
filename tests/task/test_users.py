import pytest

from settled.task.planner import plan_tasks
from settled.task.users import users
from settled.task.users.users import UserConfig, UserTask, build_tasks

ALICE_PASSWD = "alice:x:1001:1001::/home/alice:/bin/bash\n"
KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIFake alice@laptop"


def _task(**cfg):
    return UserTask("alice", UserConfig(**cfg))


def _present(server, groups="alice sudo", sudoers="alice ALL=(ALL) ALL\n", keys=KEY + "\n"):
    server.on("getent passwd alice", ALICE_PASSWD)
    server.on("id -nG alice", groups + "\n")
    server.file("/etc/sudoers.d/settled-alice", sudoers)
    server.file("/home/alice/.ssh/authorized_keys", keys)
    return server


# ----------------- Building -----------------

def test_build_sorts_users_and_cleans_lists():
    tasks = build_tasks(
        {
            "bob": UserConfig(groups=[" docker ", "docker", ""]),
            "alice": UserConfig(authorized_keys=[KEY, KEY]),
        }
    )
    assert [t.name for t in tasks] == ["user: alice", "user: bob"]
    assert tasks[0].config.authorized_keys == [KEY]
    assert tasks[1].config.groups == ["docker"]


@pytest.mark.parametrize(
    "cfg",
    [
        {"bad name": UserConfig()},
        {"alice": UserConfig(groups=["wheel;rm"])},
    ],
)
def test_build_rejects_unsafe_names(cfg):
    with pytest.raises(ValueError):
        build_tasks(cfg)


def test_planning_with_builtin_defaults_and_typo():
    plan = plan_tasks({"users": {"alice": {"sudo": True, "sudoo": True}}}, [users.spec()])
    assert [t.name for t in plan.tasks] == ["user: alice"]
    assert plan.unknown == ["users.alice.sudoo"]


def test_no_users_means_no_tasks():
    assert plan_tasks({}, [users.spec()]).tasks == []


def test_sudoers_paths_and_lines():
    assert users.sudoers_file_path("a.b/c") == "/etc/sudoers.d/settled-a.b_c"
    assert _task(sudo=True).sudoers_line == "alice ALL=(ALL) ALL"
    assert _task(sudo=True, sudo_nopasswd=True).sudoers_line == "alice ALL=(ALL) NOPASSWD:ALL"


# ----------------- Checks -----------------

def test_missing_user_needs_execution(ctx, user_server):
    user_server.on("getent passwd alice", "", exit_status=2)
    assert _task().needs_execution(ctx, user_server) is True


def test_lookup_failure_with_output_is_an_error(ctx, user_server):
    user_server.on("getent passwd alice", "getent: broken nsswitch\n", exit_status=1)
    with pytest.raises(RuntimeError, match="lookup user 'alice'"):
        _task().needs_execution(ctx, user_server)


def test_fully_configured_user_is_satisfied(ctx, user_server):
    _present(user_server)
    task = _task(sudo=True, groups=["sudo"], authorized_keys=[KEY])
    assert task.needs_execution(ctx, user_server) is False
    assert user_server.ran("sudo -n sh -c ")


def test_plain_existing_user_skips_privileged_reads(ctx, user_server):
    user_server.on("getent passwd alice", ALICE_PASSWD)
    assert _task().needs_execution(ctx, user_server) is False
    assert user_server.commands == ["getent passwd alice"]


def test_missing_group_needs_execution(ctx, user_server):
    _present(user_server, groups="alice")
    assert _task(groups=["docker"]).needs_execution(ctx, user_server) is True


def test_sudoers_mismatch_needs_execution(ctx, user_server):
    _present(user_server)
    assert _task(sudo=True, sudo_nopasswd=True).needs_execution(ctx, user_server) is True


def test_missing_sudoers_file_needs_execution(ctx, user_server):
    _present(user_server)
    user_server.missing("/etc/sudoers.d/settled-alice")
    assert _task(sudo=True).needs_execution(ctx, user_server) is True


def test_missing_key_needs_execution(ctx, user_server):
    _present(user_server, keys="ssh-rsa AAAAother other@host\n")
    assert _task(authorized_keys=[KEY]).needs_execution(ctx, user_server) is True


# ----------------- Apply -----------------

def test_render_script_covers_every_step():
    script = _task(sudo=True, sudo_nopasswd=True, groups=["docker"], authorized_keys=[KEY]).render_script()
    assert "useradd --create-home" in script
    assert "usermod -aG docker \"$name\"" in script
    assert "sudoers_file=/etc/sudoers.d/settled-alice" in script
    assert "'alice ALL=(ALL) NOPASSWD:ALL'" in script
    assert "install -m 440 -o root -g root" in script
    assert "chmod 700 \"$ssh_dir\"" in script
    assert "chmod 600 \"$auth_file\"" in script
    assert f"grep -qxF -- '{KEY}'" in script


def test_render_script_without_sudo_or_keys():
    script = _task().render_script()
    assert "useradd" in script
    assert "sudoers" not in script
    assert "authorized_keys" not in script


def test_execute_runs_script_with_sudo_prefix(ctx, user_server, root_server):
    for srv in (user_server, root_server):
        srv.on("useradd", "")
        _task().execute(ctx, srv)

    assert user_server.ran("useradd")[0].startswith("sudo -n sh -c ")
    assert root_server.ran("useradd")[0].startswith("sh -c ")


def test_converges(ctx, user_server):
    state = {"exists": False}

    def getent(_cmd):
        return ALICE_PASSWD if state["exists"] else ""

    def apply(_cmd):
        state["exists"] = True
        return ""

    user_server.on("getent passwd alice", getent)
    user_server.on("useradd", apply)

    task = _task()
    assert task.needs_execution(ctx, user_server) is True
    task.execute(ctx, user_server)
    assert task.needs_execution(ctx, user_server) is False
