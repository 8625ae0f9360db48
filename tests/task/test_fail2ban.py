from datetime import timedelta

import pytest

from settled.task.errors import PlanningError
from settled.task.fail2ban import fail2ban
from settled.task.fail2ban.fail2ban import (
    DEFAULT_JAIL_CONFIG,
    Fail2banTask,
    Rule,
    RuleError,
    normalize_rule,
    render_jail_config,
)
from settled.task.planner import plan_tasks

HEADER = "# Managed by settled. Manual changes may be overwritten.\n"
INSTALLED = "command -v fail2ban-client >/dev/null 2>&1; then echo yes"
SERVICE = "fail2ban-client ping"


def _plan(overrides):
    return plan_tasks(overrides, [fail2ban.spec()])


def _render(rules):
    return render_jail_config([normalize_rule(name, Rule(**rule)) for name, rule in sorted(rules.items())])


# ----------------- Rendering -----------------

def test_default_rules_render_sshd_jail():
    [task] = _plan({}).tasks
    assert task.config_path == DEFAULT_JAIL_CONFIG
    assert task.config_content == HEADER + (
        "[sshd]\n"
        "enabled = true\n"
        "filter = sshd\n"
        "port = ssh\n"
        "maxretry = 5\n"
        "findtime = 600\n"
        "bantime = 3600\n"
    )


def test_full_rule_rendering():
    content = _render(
        {
            "nginx": {
                "port": "http,https",
                "logpath": ["/var/log/a.log", "/var/log/b.log"],
                "backend": "auto",
                "action": "iptables-multiport",
                "ignore_ip": ["127.0.0.1/8", "10.0.0.0/8"],
                "options": {"usedns": "no", "chain": "INPUT"},
            },
            "sshd": {"enabled": False},
        }
    )
    assert content == HEADER + (
        "[nginx]\n"
        "enabled = true\n"
        "filter = nginx\n"
        "port = http,https\n"
        "logpath = /var/log/a.log\n"
        "          /var/log/b.log\n"
        "backend = auto\n"
        "action = iptables-multiport\n"
        "ignoreip = 127.0.0.1/8 10.0.0.0/8\n"
        "chain = INPUT\n"
        "usedns = no\n"
        "\n"
        "[sshd]\n"
        "enabled = false\n"
        "filter = sshd\n"
    )


def test_string_or_list_fields_and_numeric_port():
    rule = Rule(logpath=" /var/log/auth.log ", action=None, ignore_ip="", port=2222)
    assert rule.logpath == ["/var/log/auth.log"]
    assert rule.action == []
    assert rule.ignore_ip == []
    assert rule.port == "2222"


def test_durations_accept_strings_and_seconds():
    rule = Rule(find_time="1h30m", ban_time=600)
    assert rule.find_time == timedelta(hours=1, minutes=30)
    assert rule.ban_time == timedelta(minutes=10)


def test_option_values_are_formatted():
    jail = normalize_rule("x", Rule(options={"a": True, "b": 3, "c": 1.5, "d": 2.0}))
    assert jail.options == [("a", "true"), ("b", "3"), ("c", "1.5"), ("d", "2")]


# ----------------- Validation -----------------

@pytest.mark.parametrize(
    "rule,match",
    [
        ({"max_retry": 0}, "max_retry must be positive"),
        ({"ban_time": "1500ms"}, "whole seconds"),
        ({"find_time": 0}, "find_time must be positive"),
        ({"options": {"bantime": 10}}, "conflicts with built-in settings"),
        ({"options": {"BanTime": 10}}, "conflicts with built-in settings"),
        ({"options": {"usedns": ""}}, "option value cannot be empty"),
        ({"options": {"usedns": ["a"]}}, "unsupported option value type"),
        ({"port": "22\n23"}, "cannot contain newlines"),
    ],
)
def test_invalid_rules(rule, match):
    with pytest.raises(ValueError, match=match):
        _render({"sshd": rule})


def test_invalid_rule_name():
    with pytest.raises(ValueError):
        normalize_rule("ssh d", Rule())


def test_invalid_config_fails_planning_with_key():
    with pytest.raises(PlanningError) as ei:
        _plan({"fail2ban": {"rules": {"sshd": {"max_retry": -1}}}})
    assert ei.value.key == "fail2ban"
    assert isinstance(ei.value.__cause__, RuleError)


def test_bad_duration_fails_planning():
    with pytest.raises(PlanningError):
        _plan({"fail2ban": {"rules": {"sshd": {"ban_time": "forever"}}}})


def test_empty_rules_build_nothing():
    assert _plan({"fail2ban": {"rules": None}}).tasks == []


def test_override_merges_into_default_rule():
    [task] = _plan({"fail2ban": {"rules": {"sshd": {"max_retry": 3}, "recidive": {"enabled": False}}}}).tasks
    assert "maxretry = 3" in task.config_content
    assert "[recidive]\nenabled = false\n" in task.config_content


def test_unknown_rule_field_is_reported():
    plan = _plan({"fail2ban": {"rules": {"sshd": {"maxretry": 3}}}})
    assert plan.unknown == ["fail2ban.rules.sshd.maxretry"]


# ----------------- Task -----------------

def _task():
    return Fail2banTask(DEFAULT_JAIL_CONFIG, HEADER + "[sshd]\nenabled = true\n")


def test_not_installed_needs_execution(ctx, user_server):
    user_server.on(INSTALLED, "no\n")
    assert _task().needs_execution(ctx, user_server) is True
    assert user_server.ran(INSTALLED)[0].startswith("sh -c ")


def test_missing_config_needs_execution(ctx, user_server):
    user_server.on(INSTALLED, "yes\n")
    user_server.missing(DEFAULT_JAIL_CONFIG)
    assert _task().needs_execution(ctx, user_server) is True


def test_different_config_needs_execution(ctx, user_server):
    user_server.on(INSTALLED, "yes\n")
    user_server.file(DEFAULT_JAIL_CONFIG, "[sshd]\nenabled = false\n")
    assert _task().needs_execution(ctx, user_server) is True


def test_matching_config_and_running_service_is_satisfied(ctx, user_server):
    user_server.on(INSTALLED, "yes\n")
    user_server.file(DEFAULT_JAIL_CONFIG, "\n" + HEADER + "[sshd]\nenabled = true\n\n")
    user_server.on(SERVICE, "yes\n")
    assert _task().needs_execution(ctx, user_server) is False


def test_stopped_service_needs_execution(ctx, user_server):
    user_server.on(INSTALLED, "yes\n")
    user_server.file(DEFAULT_JAIL_CONFIG, HEADER + "[sshd]\nenabled = true\n")
    user_server.on(SERVICE, "no\n")
    assert _task().needs_execution(ctx, user_server) is True


def test_execute_renders_install_and_reload_script(ctx, user_server):
    user_server.on("apt-get install", "")
    _task().execute(ctx, user_server)

    [cmd] = user_server.ran("apt-get install")
    assert cmd.startswith("sudo -n sh -c ")

    script = _task().render_script()
    assert "config=/etc/fail2ban/jail.d/settled.conf" in script
    assert "fail2ban-client -t" in script
    assert "systemctl reload fail2ban || systemctl restart fail2ban" in script
    assert "[sshd]" in script
