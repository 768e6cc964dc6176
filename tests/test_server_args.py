import pytest

from moshkit.server_args import (
    ServerOptions,
    UsageError,
    parse_server_args,
    server_usage,
    version_text,
)


def parse(*args, environ=None):
    return parse_server_args(["mosh-server", *args], environ or {})


def test_help():
    assert parse("new", "-h").show == "help"
    assert parse("--help").show == "help"


def test_version():
    assert parse("new", "--version").show == "version"


def test_help_after_double_dash_is_a_command():
    opts = parse("new", "--", "prog", "--help")
    assert opts.show is None
    assert opts.command_argv == ["prog", "--help"]


def test_trailing_double_dash_gives_no_command():
    opts = parse("new", "--")
    assert opts.command_argv is None


def test_no_arguments():
    opts = parse()
    assert opts == ServerOptions()


def test_legacy_ip_and_port():
    opts = parse("127.0.0.1", "60001")
    assert opts.desired_ip == "127.0.0.1"
    assert opts.desired_port == "60001"


def test_legacy_ip_only():
    assert parse("127.0.0.1").desired_ip == "127.0.0.1"


def test_legacy_too_many():
    with pytest.raises(UsageError):
        parse("a", "b", "c")


def test_new_syntax_options():
    opts = parse(
        "new", "-v", "-v", "-i", "127.0.0.1", "-p", "60001:60010",
        "-c", "256", "-l", "LANG=en_US.UTF-8", "--", "bash", "-l",
    )
    assert opts.verbose == 2
    assert opts.desired_ip == "127.0.0.1"
    assert opts.desired_port == "60001:60010"
    assert opts.colors == 256
    assert opts.locale_vars == ["LANG=en_US.UTF-8"]
    assert opts.command_argv == ["bash", "-l"]


def test_clustered_and_attached_arguments():
    opts = parse("new", "-vc8", "-p60001")
    assert opts.verbose == 1
    assert opts.colors == 8
    assert opts.desired_port == "60001"


def test_at_option_eats_argument():
    opts = parse("new", "-v", "-@", "new", "-c", "256")
    assert opts.colors == 256
    assert opts.verbose == 1


def test_unknown_option_does_not_die():
    opts = parse("new", "-x", "-v")
    assert opts.verbose == 1
    assert any("-x" in w or "'x'" in w for w in opts.warnings)


def test_bad_colors():
    with pytest.raises(UsageError, match="Bad number of colors"):
        parse("new", "-c", "lots")


def test_bad_port_range():
    with pytest.raises(UsageError, match="Bad UDP port range"):
        parse("new", "-p", "60999:60001")


def test_ssh_ip_strips_ipv6_prefix():
    env = {"SSH_CONNECTION": "10.0.0.1 5000 ::ffff:10.0.0.2 22"}
    assert parse("new", "-s", environ=env).desired_ip == "10.0.0.2"


def test_ssh_ip_plain():
    env = {"SSH_CONNECTION": "10.0.0.1 5000 10.0.0.3 22"}
    assert parse("new", "-s", environ=env).desired_ip == "10.0.0.3"


def test_ssh_ip_missing():
    opts = parse("new", "-i", "127.0.0.1", "-s")
    assert opts.desired_ip is None
    assert any("SSH_CONNECTION not found" in w for w in opts.warnings)


def test_ssh_ip_unparsable():
    opts = parse("new", "-s", environ={"SSH_CONNECTION": "only two"})
    assert opts.desired_ip is None
    assert any("Could not parse" in w for w in opts.warnings)


def test_usage_text():
    text = server_usage("prog")
    assert text.startswith("Usage: prog new")
    assert "[-- COMMAND...]" in text


def test_version_text_names_program():
    assert version_text("mosh-server").startswith("mosh-server (")


def test_empty_argv():
    with pytest.raises(UsageError):
        parse_server_args([], {})